import logging
from pathlib import Path

from ispstack.logging.log import RedactSecrets, init_logging


def _record(msg, *args):
    return logging.LogRecord("ispstack", logging.DEBUG, __file__, 1, msg, args, None)


def test_redacts_passwords():
    f = RedactSecrets()
    rec = _record("[%s][stdout]\nDB_USERNAME=u\nDB_PASSWORD=%s\n", "cat", "hunter2=")
    f.filter(rec)
    assert "hunter2" not in rec.getMessage()
    assert "DB_PASSWORD=***" in rec.getMessage()

    rec = _record("CREATE USER 'u'@'%' IDENTIFIED BY 's3cret'")
    f.filter(rec)
    assert rec.getMessage() == "CREATE USER 'u'@'%' IDENTIFIED BY '***'"


def test_leaves_other_messages_alone():
    rec = _record("Installing %s", "nginx-full")
    assert RedactSecrets().filter(rec) is True
    assert rec.args == ("nginx-full",)


def test_init_logging_writes_a_full_trace(tmp_path: Path):
    logger, run_id, log_path = init_logging(base_dir=tmp_path, run_id="fixed-run")
    try:
        logger.debug("[apt-install] $ apt-get install -y ufw")
        logger.debug('password = "not-for-the-log"')
        for h in logger.handlers:
            h.flush()

        text = log_path.read_text()
        assert run_id == "fixed-run"
        assert log_path.name.startswith("ispstack-") and log_path.name.endswith("-fixed-run.log")
        assert "run_id=fixed-run" in text
        assert "apt-get install -y ufw" in text
        assert "not-for-the-log" not in text
        assert not logger.propagate
    finally:
        for h in list(logger.handlers):
            h.close()
        logger.handlers.clear()
        logger.propagate = True

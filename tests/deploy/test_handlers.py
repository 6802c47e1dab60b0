from pathlib import Path

import pytest

from ispstack.deploy import handlers
from ispstack.deploy.models import RunContext, Step, StepKind
from ispstack.errors import IspStackError, PreconditionWarning
from ispstack.state.models import Credentials, HostState

from fakes import FakeRunner, FakeServiceManager, desired_for, make_toolkit

CREDS = Credentials(db_user="user_abc123", db_password="pw-123", db_name="radius", app_key="base64:k=")


def _setup(tmp_path: Path, runner=None, **kit):
    desired = desired_for(tmp_path)
    toolkit = make_toolkit(desired, runner or FakeRunner(), **kit)
    ctx = RunContext(host_state=HostState(), paths=desired.paths)
    return toolkit, ctx


def _call(step, ctx, kit):
    return handlers.get(step.kind)(step, ctx, kit)


def test_every_step_kind_has_a_handler():
    for kind in StepKind:
        assert handlers.has(kind), kind


def test_restart_is_gated_by_triggers(tmp_path: Path):
    services = FakeServiceManager(active={"freeradius"})
    kit, ctx = _setup(tmp_path, services=services)
    step = Step("radius.restart", StepKind.RESTART_SERVICE, "freeradius", {"only_if_changed": ["radius.sql"]})

    assert _call(step, ctx, kit) is False
    ctx.changed.add("radius.sql")
    assert _call(step, ctx, kit) is True
    assert services.restarts == ["freeradius"]


def test_restart_with_no_live_triggers_never_restarts(tmp_path: Path):
    services = FakeServiceManager(active={"nginx"})
    kit, ctx = _setup(tmp_path, services=services)
    ctx.changed.add("something.else")
    step = Step("nginx.restart", StepKind.RESTART_SERVICE, "nginx", {"only_if_changed": []})
    assert _call(step, ctx, kit) is False


def test_restart_starts_a_stopped_service(tmp_path: Path):
    services = FakeServiceManager()
    kit, ctx = _setup(tmp_path, services=services)
    step = Step("nginx.reload", StepKind.RESTART_SERVICE, "nginx", {"only_if_changed": ["nginx.site-tls"], "action": "reload"})
    assert _call(step, ctx, kit) is True
    assert services.is_active("nginx")
    assert services.reloads == []


def test_reload_action(tmp_path: Path):
    services = FakeServiceManager(active={"nginx"})
    kit, ctx = _setup(tmp_path, services=services)
    ctx.changed.add("nginx.site-tls")
    step = Step("nginx.reload", StepKind.RESTART_SERVICE, "nginx", {"only_if_changed": ["nginx.site-tls"], "action": "reload"})
    assert _call(step, ctx, kit) is True
    assert services.reloads == ["nginx"]
    assert services.restarts == []


def test_stop_of_stopped_service_is_a_precondition_warning(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    with pytest.raises(PreconditionWarning):
        _call(Step("stop.nginx", StepKind.STOP_SERVICE, "nginx"), ctx, kit)


def test_firewall_is_idempotent(tmp_path: Path):
    runner = FakeRunner()
    kit, ctx = _setup(tmp_path, runner)
    step = Step("firewall.rules", StepKind.FIREWALL, "ufw", {"rules": ["ssh", "http"]})

    assert _call(step, ctx, kit) is True
    assert "firewall.rules:enable" in runner.labels()
    assert _call(step, ctx, kit) is False
    assert runner.labels().count("firewall.rules:enable") == 1


def test_self_test_failure_names_the_last_line(tmp_path: Path):
    class Broken(FakeRunner):
        def _answer(self, cmd, label):
            return "reading sql module\n/etc/freeradius/mods-enabled/sql[12]: Invalid location for 'login'\n", 1

    kit, ctx = _setup(tmp_path, Broken())
    step = Step("radius.selftest", StepKind.SELF_TEST, "freeradius",
                {"command": ["freeradius", "-XC"], "expect": "Configuration appears to be OK"})

    with pytest.raises(IspStackError, match="Invalid location for 'login'"):
        _call(step, ctx, kit)


def test_self_test_passes_unchanged(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("radius.selftest", StepKind.SELF_TEST, "freeradius",
                {"command": ["freeradius", "-XC"], "expect": "Configuration appears to be OK"})
    assert _call(step, ctx, kit) is False


def test_database_probe_short_circuits(tmp_path: Path):
    runner = FakeRunner()
    kit, ctx = _setup(tmp_path, runner)
    ctx.credentials = CREDS
    step = Step("database.create", StepKind.DATABASE, "mysql", {
        "statements": ["CREATE DATABASE IF NOT EXISTS `{db_name}`"],
        "probe": "SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='{db_name}'",
        "expect": "1",
        "credentials": True,
    })
    runner.expects["database.create"] = "1"

    assert _call(step, ctx, kit) is True
    label, cmd, kwargs = runner.calls[-1]
    assert label == "database.create"
    assert kwargs["input"] == "CREATE DATABASE IF NOT EXISTS `radius`;\n"
    assert kwargs["secret"] is True

    assert _call(step, ctx, kit) is False
    assert runner.calls[-1][0] == "database.create:check"


def test_database_step_needs_credentials(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("database.grant", StepKind.DATABASE, "mysql", {"statements": ["SELECT 1"], "credentials": True})
    with pytest.raises(IspStackError, match="needs credentials"):
        _call(step, ctx, kit)


def test_optional_database_step_without_credentials_warns(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("database.drop", StepKind.DATABASE, "mysql",
                {"statements": ["DROP DATABASE x"], "credentials": True, "optional": True})
    with pytest.raises(PreconditionWarning):
        _call(step, ctx, kit)


def test_obtain_credentials_twice_in_one_run_is_an_error(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("credentials.obtain", StepKind.OBTAIN_CREDENTIALS, "db.txt")
    assert _call(step, ctx, kit) is True
    with pytest.raises(IspStackError, match="already obtained"):
        _call(step, ctx, kit)


def test_render_keeps_existing_app_key(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    ctx.credentials = Credentials(db_user="u", db_password="p", db_name="radius")
    target = tmp_path / "html" / ".env"
    target.parent.mkdir()
    target.write_text("APP_KEY=base64:generated-by-artisan=\n")
    step = Step("app.env", StepKind.RENDER_TEMPLATE, str(target), {
        "template": "app.env.j2",
        "variables": {
            "domain": "a.example.com", "app_url": "https://a.example.com",
            "cache_driver": "redis", "queue_connection": "redis",
        },
        "credentials": True,
        "keep_existing": ["APP_KEY"],
        "mode": 0o640,
    })

    assert _call(step, ctx, kit) is True
    assert "APP_KEY=base64:generated-by-artisan=\n" in target.read_text()
    assert _call(step, ctx, kit) is False


def test_enable_module_requires_its_source(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("radius.site-enable", StepKind.ENABLE_MODULE, "buffered-sql",
                {"source": str(tmp_path / "missing"), "links": [str(tmp_path / "link")]})
    with pytest.raises(IspStackError, match="does not exist"):
        _call(step, ctx, kit)


def test_run_command_creates_and_unless(tmp_path: Path):
    runner = FakeRunner()
    kit, ctx = _setup(tmp_path, runner)
    marker = tmp_path / "artisan"
    step = Step("app.source", StepKind.RUN_COMMAND, str(tmp_path),
                {"command": ["git", "clone", "x"], "creates": str(marker)})
    runner.creates["app.source"] = (marker, False)

    assert _call(step, ctx, kit) is True
    assert _call(step, ctx, kit) is False

    key = Step("app.key", StepKind.RUN_COMMAND, str(tmp_path),
               {"command": ["php", "artisan", "key:generate"], "unless": ["grep", "-q", "APP_KEY=", ".env"]})
    assert _call(key, ctx, kit) is True
    assert _call(key, ctx, kit) is False
    assert runner.labels()[-1] == "app.key:check"


def test_migration_reports_nothing_to_migrate(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    step = Step("app.migrate", StepKind.RUN_MIGRATION, "/var/www/html", {"command": ["php", "artisan", "migrate"]})
    assert _call(step, ctx, kit) is True
    assert _call(step, ctx, kit) is False


def test_certificate_is_reused(tmp_path: Path):
    runner = FakeRunner()
    desired = desired_for(tmp_path)
    kit = make_toolkit(desired, runner)
    ctx = RunContext(host_state=HostState(certificates=("example.test",)), paths=desired.paths)
    step = Step("tls.issue", StepKind.ISSUE_CERTIFICATE, "example.test", {"command": ["certbot"]})
    assert _call(step, ctx, kit) is False
    assert runner.calls == []


def test_write_marker(tmp_path: Path):
    kit, ctx = _setup(tmp_path)
    marker = tmp_path / "root" / ".simpleisp_cleanup_done"
    assert _call(Step("marker.write", StepKind.WRITE_MARKER, str(marker)), ctx, kit) is True
    assert len(marker.read_text().strip()) == len("2024-05-01 10:00:00")

# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/logging/log.py

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path

_SECRET_PATTERNS = (
    re.compile(r"(DB_PASSWORD=)\S+"),
    re.compile(r"(IDENTIFIED BY ')[^']*(?=')"),
    re.compile(r"(password = \")[^\"]*(?=\")"),
)


class RedactSecrets(logging.Filter):
    """Masks database passwords that slip into a log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = msg
        for pattern in _SECRET_PATTERNS:
            redacted = pattern.sub(r"\1***", redacted)
        if redacted != msg:
            record.msg, record.args = redacted, None
        return True


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "ispstack",
    verbose: bool = False,
    run_id: str | None = None,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - full-trace log file per run (every command and its output)
      - console handler at INFO, DEBUG with --verbose
      - returns run_id so observers can reuse it
    """
    run_id = run_id or str(uuid.uuid4())

    if base_dir is None:
        base_dir = Path.home() / ".ispstack" / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG when --verbose is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    for h in (fh, ch):
        h.addFilter(RedactSecrets())
        logger.addHandler(h)

    logger.info("=== ispstack run started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path

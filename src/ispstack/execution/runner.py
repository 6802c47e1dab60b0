# src/ispstack/execution/runner.py

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from ..errors import ExternalCommandError, TransientExternalError, classify_command_error

Cmd = Sequence[Union[str, "os.PathLike[str]"]]


@dataclass
class CommandRunner:
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("ispstack"))
    dry_run: bool = False
    label: Optional[str] = None
    env: Optional[dict[str, str]] = None

    def run(
        self,
        cmd: Cmd,
        *,
        label: Optional[str] = None,
        check: bool = True,
        text: bool = True,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
        secret: bool = False,
    ) -> subprocess.CompletedProcess:
        """
        Run a command, logging it and its output to the run log.

        check=True raises ExternalCommandError (or TransientExternalError when
        the output looks like lock contention / network trouble).
        secret=True keeps arguments and output out of the log.
        """
        label = label or self.label or "cmd"
        cmd_str = "<redacted>" if secret else " ".join(map(str, cmd))

        # --- Log command ---
        self.logger.debug(f"[{label}] $ {cmd_str}")

        if self.dry_run:
            self.logger.debug(f"[{label}] dry-run: skipped execution")
            return subprocess.CompletedProcess(
                args=list(cmd),
                returncode=0,
                stdout="",
                stderr="",
            )

        merged_env = None
        if self.env or env:
            merged_env = {**os.environ, **(self.env or {}), **(env or {})}

        start = time.time()
        try:
            result = subprocess.run(
                [str(c) for c in cmd],
                capture_output=True,
                check=False,
                text=text,
                cwd=cwd,
                env=merged_env,
                input=input,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise ExternalCommandError(cmd, 127, stderr=str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise TransientExternalError(f"[{label}] timed out after {timeout}s") from e

        duration = time.time() - start

        # --- Log outputs ---
        if not secret:
            if result.stdout:
                self.logger.debug(f"[{label}][stdout]\n{result.stdout.rstrip()}")
            if result.stderr:
                self.logger.debug(f"[{label}][stderr]\n{result.stderr.rstrip()}")
        self.logger.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")

        if check and result.returncode != 0:
            err = ExternalCommandError(
                cmd if not secret else [str(cmd[0]), "<redacted>"],
                result.returncode,
                stdout="" if secret else (result.stdout or ""),
                stderr=result.stderr or "",
            )
            raise classify_command_error(err)

        return result

# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/errors.py

from __future__ import annotations

from typing import Any, List, Optional, Sequence


class IspStackError(RuntimeError):
    pass


class InputError(IspStackError, ValueError):
    """
    Bad desired configuration or unsupported host (e.g. unknown codename).
    Always raised before any mutating step runs.
    """


class UnknownDependencyError(InputError):
    pass


class CyclicDependencyError(InputError):
    pass


class TransientExternalError(IspStackError):
    """
    Network fetch failure or package manager lock contention.
    Retried by the executor where the step kind allows it.
    """


class ExternalCommandError(IspStackError):
    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout or "").strip().splitlines()
        tail = f": {detail[-1]}" if detail else ""
        super().__init__(f"'{' '.join(self.cmd)}' exited with {returncode}{tail}")


class FatalStepError(IspStackError):
    def __init__(
        self,
        step_id: str,
        cause: BaseException | str,
        completed_steps: Optional[List[str]] = None,
        result: Any = None,
    ):
        self.step_id = step_id
        self.cause = cause
        self.completed_steps = list(completed_steps or [])
        self.result = result
        super().__init__(f"step '{step_id}' failed: {cause}")


class PreconditionWarning(IspStackError):
    """
    The desired end state already holds but the action could not be applied,
    e.g. stopping a service that is not running. Logged, never fatal.
    """


class ConcurrentRunError(IspStackError):
    pass


class RetryError(IspStackError):
    pass


# ---------------------------------------------------------------------
# Classification of command failures
# ---------------------------------------------------------------------

_TRANSIENT_MARKERS = (
    "Could not get lock",
    "Unable to acquire the dpkg frontend lock",
    "is another process using it",
    "Temporary failure resolving",
    "Failed to fetch",
    "Could not resolve host",
    "Connection timed out",
    "Connection refused",
    "Network is unreachable",
)


def is_transient_output(text: str) -> bool:
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_command_error(err: ExternalCommandError) -> IspStackError:
    """
    Map a failed command to TransientExternalError when its output looks
    like lock contention or a network problem, otherwise return it as is.
    """
    if is_transient_output(f"{err.stdout}\n{err.stderr}"):
        return TransientExternalError(str(err))
    return err

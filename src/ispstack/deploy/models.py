# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set

from ..errors import IspStackError


class StepKind(str, Enum):
    CONFIGURE_REPOSITORY = "configure-repository"
    REFRESH_INDEX = "refresh-index"
    INSTALL_PACKAGE = "install-package"
    OBTAIN_CREDENTIALS = "obtain-credentials"
    DATABASE = "database"
    RENDER_TEMPLATE = "render-template"
    ENABLE_MODULE = "enable-module"
    RUN_COMMAND = "run-command"
    RUN_MIGRATION = "run-migration"
    SET_PERMISSION = "set-permission"
    ENABLE_SERVICE = "enable-service"
    START_SERVICE = "start-service"
    RESTART_SERVICE = "restart-service"
    STOP_SERVICE = "stop-service"
    SELF_TEST = "self-test"
    FIREWALL = "firewall"
    ISSUE_CERTIFICATE = "issue-certificate"
    PERSIST_CREDENTIALS = "persist-credentials"
    WRITE_CLEANUP_SCRIPT = "write-cleanup-script"
    CONSUME_MARKER = "consume-marker"
    REMOVE_PATH = "remove-path"
    WRITE_MARKER = "write-marker"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class StepOutcome(str, Enum):
    CHANGED = "CHANGED"
    UNCHANGED = "UNCHANGED"      # already satisfied


_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.SUCCEEDED, StepStatus.FAILED},
    StepStatus.SUCCEEDED: set(),
    StepStatus.FAILED: set(),
}


class InvalidTransitionError(IspStackError):
    pass


@dataclass(frozen=True)
class Step:
    id: str
    kind: StepKind
    target: str = ""
    params: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    depends_on: List[str] = field(default_factory=list, hash=False, compare=False)
    description: str = ""

    @property
    def triggers(self) -> List[str]:
        return list(self.params.get("only_if_changed") or [])

    def label(self) -> str:
        return self.description or f"{self.kind.value} {self.target}".strip()


@dataclass
class StepRecord:
    """
    Execution record of one step: Pending -> Running -> {Succeeded, Failed}.
    """
    step_id: str
    status: StepStatus = StepStatus.PENDING
    outcome: Optional[StepOutcome] = None
    attempts: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def transition(self, new: StepStatus) -> None:
        if new not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"step '{self.step_id}': illegal transition {self.status.value} -> {new.value}"
            )
        self.status = new


@dataclass
class Plan:
    steps: List[Step] = field(default_factory=list)
    codename: str = ""
    force_reconfigure: bool = False

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __contains__(self, step_id: object) -> bool:
        return any(s.id == step_id for s in self.steps)

    def ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def get(self, step_id: str) -> Step:
        for s in self.steps:
            if s.id == step_id:
                return s
        raise KeyError(step_id)

    def index(self, step_id: str) -> int:
        return self.ids().index(step_id)

    def of_kind(self, kind: StepKind) -> List[Step]:
        return [s for s in self.steps if s.kind is kind]


@dataclass
class RunResult:
    completed_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    aborted: bool = False
    records: Dict[str, StepRecord] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failed_step is None and not self.aborted

    @property
    def last_completed(self) -> Optional[str]:
        return self.completed_steps[-1] if self.completed_steps else None

    @property
    def changed_steps(self) -> List[str]:
        return [
            sid for sid in self.completed_steps
            if self.records[sid].outcome is StepOutcome.CHANGED
        ]

    @property
    def warnings(self) -> List[str]:
        out: List[str] = []
        for sid in self.completed_steps:
            out += [f"{sid}: {w}" for w in self.records[sid].warnings]
        return out

    def summary(self) -> str:
        changed = len(self.changed_steps)
        unchanged = len(self.completed_steps) - changed
        failed = 1 if self.failed_step else 0
        return f"CHANGED={changed} UNCHANGED={unchanged} FAILED={failed} ABORTED={self.aborted}"


@dataclass
class RunContext:
    """
    Mutable state threaded through one run. Replaces the ambient shell
    variables of the old installers.
    """
    host_state: Any
    paths: Any
    credentials: Any = None
    changed: Set[str] = field(default_factory=set)

    def triggered(self, step: Step) -> bool:
        return any(t in self.changed for t in step.triggers)

    def require_credentials(self, step: Step):
        if self.credentials is None:
            raise IspStackError(f"step '{step.id}' needs credentials but none were obtained in this run")
        return self.credentials


def as_path(value: Any) -> Path:
    return value if isinstance(value, Path) else Path(str(value))

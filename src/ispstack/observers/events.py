# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str                  # ISO timestamp
    run_id: str              # correlates all events of one reconciliation
    host: str                # hostname being provisioned
    codename: Optional[str]  # distribution codename, None until known

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(host: str, codename: Optional[str] = None, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "host": host,
        "codename": codename,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Detection & planning
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostStateDetected(BaseEvent):
    installed: bool
    cleaned_up: bool
    credentials_present: bool

@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]
    force_reconfigure: bool = False

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    step_id: str
    kind: str
    target: str

@dataclass(frozen=True)
class StepAttempt(BaseEvent):
    step_id: str
    attempt: int

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    step_id: str
    outcome: str         # "CHANGED" | "UNCHANGED"
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepWarning(BaseEvent):
    step_id: str
    message: str

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    step_id: str
    attempts: int
    error: str


# ---------------------------------------------------------------------
# Credentials & markers
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class CredentialsObtained(BaseEvent):
    db_user: str
    reused: bool

@dataclass(frozen=True)
class MarkerConsumed(BaseEvent):
    path: str
    marker_text: Optional[str] = None


# ---------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunAborted(BaseEvent):
    last_completed: Optional[str]
    reason: str

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    completed: int
    changed: int
    failed_step: Optional[str] = None
    error: Optional[str] = None

"""Outcome of a lifecycle operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

STARTED = "started"
STOPPED = "stopped"
RESTARTED = "restarted"
FAILED = "failed"


@dataclass(frozen=True)
class LifecycleOutcome:
    """Tagged result: started/stopped/restarted carry an id, failed a reason.

    Attributes:
        kind: One of started, stopped, restarted, failed
        container_id: Container the operation acted on (None for a failed
            launch that never created anything)
        changed: False when the call was an idempotent no-op
        reason: Human readable failure reason (failed only)
        error_class: Failure category from the error taxonomy (failed only)
    """

    kind: str
    container_id: Optional[str] = None
    changed: bool = True
    reason: Optional[str] = None
    error_class: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind != FAILED

    @classmethod
    def started(cls, container_id: str, changed: bool = True) -> "LifecycleOutcome":
        return cls(kind=STARTED, container_id=container_id, changed=changed)

    @classmethod
    def stopped(cls, container_id: str, changed: bool = True) -> "LifecycleOutcome":
        return cls(kind=STOPPED, container_id=container_id, changed=changed)

    @classmethod
    def restarted(cls, container_id: str) -> "LifecycleOutcome":
        return cls(kind=RESTARTED, container_id=container_id)

    @classmethod
    def failed(
        cls, reason: str, error_class: str, container_id: Optional[str] = None
    ) -> "LifecycleOutcome":
        return cls(
            kind=FAILED,
            container_id=container_id,
            changed=False,
            reason=reason,
            error_class=error_class,
        )

    def to_dict(self) -> dict:
        data = {"status": self.kind, "id": self.container_id, "changed": self.changed}
        if self.kind == FAILED:
            data["reason"] = self.reason
            data["error_class"] = self.error_class
        return data

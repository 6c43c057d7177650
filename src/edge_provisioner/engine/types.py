"""Plans, planned changes and apply outcomes."""

from __future__ import annotations

import json
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from collections.abc import Iterable


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class NodeStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELED = "canceled"


def _count_actions(changes: Iterable[ResourceChange]) -> dict[str, int]:
    seen = Counter(c.action for c in changes)
    return {action.value: seen[action] for action in Action}


class PlanMetadata(BaseModel):
    """Where a plan came from; apply compares it with the current state.

    ``state_lineage``, ``state_serial`` and ``state_digest`` describe the
    state the plan was computed against.
    """

    stack: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """One planned action. ``planned`` values not yet known read ``(known after apply)``."""

    address: str
    resource_type: str
    action: Action
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        return _count_actions(self.changes)

    def save(self, path: Path | str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)
        target.write_text(payload + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path | str) -> Plan:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


class NodeResult(BaseModel):
    address: str
    action: Action
    status: NodeStatus
    error: str | None = None
    blocked_by: str | None = None
    attempts: int = 0


class ApplyResult(BaseModel):
    """``applied`` lists the changes that took effect; ``nodes`` has one entry per operation."""

    applied: list[ResourceChange] = Field(default_factory=list)
    nodes: list[NodeResult] = Field(default_factory=list)
    canceled: bool = False

    def summary(self) -> dict[str, int]:
        return _count_actions(self.applied)

    def statuses(self) -> dict[str, NodeStatus]:
        return {n.address: n.status for n in self.nodes}

    def _with_status(self, status: NodeStatus) -> list[NodeResult]:
        return [n for n in self.nodes if n.status is status]

    @property
    def failed(self) -> list[NodeResult]:
        return self._with_status(NodeStatus.FAILED)

    @property
    def blocked(self) -> list[NodeResult]:
        return self._with_status(NodeStatus.BLOCKED)

    @property
    def ok(self) -> bool:
        return not self.canceled and all(n.status is NodeStatus.APPLIED for n in self.nodes)

"""State file model: what was last applied, per resource address."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _sha256(obj: Any) -> str:
    # default=str covers datetimes and paths; key order is fixed by sort_keys.
    payload = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(UTC)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Stable hash of a resource's stored attributes."""
    return _sha256(dict(attrs))


def _write_atomic(path: Path, content: str) -> None:
    """Replace *path* with *content* via a fsynced temp file in the same directory."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        tmp.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()


class ResourceInstance(BaseModel):
    """One applied resource as recorded in state.

    ``attributes`` holds the last-applied declared fields plus provider
    outputs (``id``, ``self_link``, ``address``...). ``dependencies`` are the
    addresses the resource depended on when it was applied; deletes are
    ordered by them after the declaration is gone.
    """

    address: str
    resource_type: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class State(BaseModel):
    """Terraform-style state for one stack.

    ``serial`` grows on every write. ``lineage`` is fixed when the state is
    first created; together they let apply reject a plan made against a
    different or older state.
    """

    version: int = STATE_VERSION
    stack: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Write atomically, keeping the previous file as ``<path>.backup``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            Path(f"{path}.backup").write_bytes(path.read_bytes())
        content = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)
        _write_atomic(path, content + "\n")
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, stack: str) -> "State":
        """Load *path*, or start a fresh lineage for *stack* when it does not exist."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            logger.debug("No state at %s; starting a new lineage for stack %s", path, stack)
            return cls(stack=stack)


def compute_state_digest(state: State) -> str:
    """Digest of state identity and content. Timestamps are left out."""
    return _sha256(
        {
            "version": state.version,
            "stack": state.stack,
            "lineage": state.lineage,
            "serial": state.serial,
            "resources": [
                {
                    "address": address,
                    "resource_type": inst.resource_type,
                    "name": inst.name,
                    "attributes_hash": inst.attributes_hash,
                    "dependencies": sorted(inst.dependencies),
                }
                for address, inst in sorted(state.resources.items())
            ],
        }
    )

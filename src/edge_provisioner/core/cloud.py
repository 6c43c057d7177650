"""Provider client protocol and the file-backed local cloud.

The engine only needs four calls per resource kind. ``LocalCloud`` implements
them against a JSON file so stacks can be planned and applied without a real
cloud account (demos, tests, dry runs of module output).
"""

from __future__ import annotations

import contextlib
import copy
import hashlib
import json
import logging
import os
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from edge_provisioner.engine.errors import ProviderError

logger = logging.getLogger(__name__)

# Keys the provider owns; a patch never overwrites them.
_SERVER_KEYS = frozenset({"id", "kind", "name", "self_link", "creation_timestamp"})


class CloudClient(Protocol):
    """Minimal provider API surface used by resource handlers."""

    def get(self, kind: str, name: str) -> dict[str, Any] | None:
        """Return the object, or ``None`` if it does not exist."""
        ...

    def insert(self, kind: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create the object and return it with server-assigned outputs."""
        ...

    def patch(self, kind: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Replace the object's user fields and return it."""
        ...

    def delete(self, kind: str, name: str) -> None:
        """Delete the object. Raises a 404 ``ProviderError`` if it is missing."""
        ...


def _digest_bytes(*parts: str) -> bytes:
    return hashlib.sha256("/".join(parts).encode("utf-8")).digest()


def _allocate_ip(project: str, name: str, version: str = "IPV4") -> str:
    b = _digest_bytes(project, name)
    if version == "IPV6":
        return f"2600:1901:0:{b[0]:02x}{b[1]:02x}::"
    return f"34.{b[0]}.{b[1]}.{max(b[2], 1)}"


class LocalCloud:
    """Thread-safe JSON-file-backed cloud API.

    One file per project under *data_dir*. Every call re-reads the file so
    several processes see each other's writes; calls within a process are
    serialized by a lock.
    """

    def __init__(self, data_dir: Path, project: str) -> None:
        self._path = Path(data_dir) / f"{project}.json"
        self._project = project
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, dict[str, dict[str, Any]]]:
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}

    def _save(self, data: dict[str, dict[str, dict[str, Any]]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            tmp_file.replace(self._path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()

    def _computed(self, kind: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Server-assigned outputs for a freshly inserted object."""
        match kind:
            case "globalAddresses":
                return {"address": _allocate_ip(self._project, name, body.get("ipVersion", "IPV4"))}
            case "globalForwardingRules":
                ip = body.get("IPAddress") or _allocate_ip(self._project, f"fr-{name}")
                return {"IPAddress": ip, "ip_address": ip}
            case "sslCertificates":
                return {"status": "ACTIVE", "type": "MANAGED"}
            case _:
                return {}

    def list(self, kind: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(o) for _, o in sorted(self._load().get(kind, {}).items())]

    def get(self, kind: str, name: str) -> dict[str, Any] | None:
        with self._lock:
            obj = self._load().get(kind, {}).get(name)
            return copy.deepcopy(obj) if obj is not None else None

    def insert(self, kind: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            data = self._load()
            objects = data.setdefault(kind, {})
            if name in objects:
                raise ProviderError(f"{kind}/{name} already exists", status=409)
            obj = {
                **copy.deepcopy(body),
                "kind": kind,
                "name": name,
                "id": str(int.from_bytes(_digest_bytes(self._project, kind, name)[:7], "big")),
                "self_link": f"projects/{self._project}/global/{kind}/{name}",
                "creation_timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
            }
            obj.update(self._computed(kind, name, body))
            objects[name] = obj
            self._save(data)
            logger.debug("Inserted %s/%s", kind, name)
            return copy.deepcopy(obj)

    def patch(self, kind: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            data = self._load()
            objects = data.get(kind, {})
            existing = objects.get(name)
            if existing is None:
                raise ProviderError(f"{kind}/{name} not found", status=404)
            computed = self._computed(kind, name, body)
            obj = {k: v for k, v in existing.items() if k in _SERVER_KEYS or k in computed}
            obj.update(copy.deepcopy(body))
            obj.update(computed)
            if kind == "globalAddresses":
                # Reserved addresses keep their IP across updates.
                obj["address"] = existing.get("address", obj.get("address"))
            objects[name] = obj
            self._save(data)
            logger.debug("Patched %s/%s", kind, name)
            return copy.deepcopy(obj)

    def delete(self, kind: str, name: str) -> None:
        with self._lock:
            data = self._load()
            objects = data.get(kind, {})
            if name not in objects:
                raise ProviderError(f"{kind}/{name} not found", status=404)
            del objects[name]
            self._save(data)
            logger.debug("Deleted %s/%s", kind, name)

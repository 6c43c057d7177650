"""Advisory lock on ``<state>.lock`` so only one run writes a state file."""

from __future__ import annotations

import json
import os
import socket
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, TYPE_CHECKING

from edge_provisioner.engine.errors import ConflictError, StateLockError

if TYPE_CHECKING:
    from types import TracebackType

_POLL_INTERVAL = 0.1

if sys.platform == "win32":  # pragma: no cover
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


def _describe_holder(path: Path) -> str | None:
    try:
        info = json.loads(path.read_text(encoding="utf-8"))
        return f"pid {info['pid']} on {info['host']} since {info['acquired_at']}"
    except (OSError, ValueError, KeyError, TypeError):
        return None


class StateLock:
    """Exclusive lock held for the duration of a ``with`` block.

    With the default ``timeout=0`` a busy lock raises :class:`ConflictError`
    at once; otherwise acquisition is retried every 100ms until *timeout*
    seconds have passed. While held, the lock file names the holder (pid,
    host, acquisition time) for the conflict message.
    """

    def __init__(self, state_path: Path, *, timeout: float = 0.0) -> None:
        self.lock_path = Path(f"{state_path}.lock")
        self._timeout = timeout
        self._fh: IO[str] | None = None

    def _acquire(self, fh: IO[str]) -> None:
        deadline = time.monotonic() + self._timeout
        while not _try_lock(fh.fileno()):
            if time.monotonic() >= deadline:
                raise ConflictError(str(self.lock_path), _describe_holder(self.lock_path))
            time.sleep(_POLL_INTERVAL)

    def __enter__(self) -> StateLock:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        # The descriptor stays open while the lock is held.
        fh = self.lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire(fh)
            fh.seek(0)
            fh.truncate()
            json.dump(
                {
                    "pid": os.getpid(),
                    "host": socket.gethostname(),
                    "acquired_at": datetime.now(UTC).isoformat(timespec="seconds"),
                },
                fh,
            )
            fh.flush()
        except StateLockError:
            fh.close()
            raise
        except OSError as exc:
            fh.close()
            raise StateLockError(f"Cannot lock {self.lock_path}: {exc}") from exc
        self._fh = fh
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fh.truncate(0)
            _unlock(fh.fileno())
        finally:
            fh.close()

"""Locked state sessions."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

from edge_provisioner.core.state import State
from edge_provisioner.engine.errors import StateMismatchError
from edge_provisioner.engine.lock import StateLock

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


class StateSession:
    """A locked, loaded state with commit/rollback.

    ``state`` is the working copy. :meth:`commit` persists it; on rollback
    the working copy is reset to the last committed snapshot.
    """

    def __init__(self, path: Path, state: State) -> None:
        self._path = path
        self.state = state
        self._committed = state.model_copy(deep=True)

    @property
    def committed(self) -> State:
        return self._committed

    def commit(self) -> None:
        self.state.serial += 1
        self.state.save(self._path)
        self._committed = self.state.model_copy(deep=True)

    def rollback(self) -> None:
        self.state = self._committed.model_copy(deep=True)


class StateStore:
    """State file for one stack, guarded by an exclusive lock."""

    def __init__(self, path: Path, stack: str, *, lock_timeout: float = 0.0) -> None:
        self._path = path
        self._stack = stack
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> State:
        """Load state without locking (read-only callers)."""
        state = State.load_or_create(self._path, stack=self._stack)
        if state.stack != self._stack:
            raise StateMismatchError(self._stack, state.stack)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    @contextlib.contextmanager
    def session(self, *, bootstrap: State | None = None) -> Iterator[StateSession]:
        """Hold the lock for the duration of the block.

        Raises :class:`ConflictError` if another run holds the lock. On an
        exception the session's working state is rolled back to the last
        commit before the lock is released. When no state file exists yet,
        *bootstrap* (if given) seeds the session instead of a fresh state.
        """
        with StateLock(self._path, timeout=self._lock_timeout):
            if bootstrap is not None and not self._path.exists():
                state = bootstrap.model_copy(deep=True)
            else:
                state = self.read()
            session = StateSession(self._path, state)
            try:
                yield session
            except BaseException:
                logger.debug("Rolling back uncommitted state changes")
                session.rollback()
                raise

"""Parallel, dependency-ordered execution of apply operations."""

from __future__ import annotations

import heapq
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from edge_provisioner.engine.graph import DependencyGraph
from edge_provisioner.engine.types import NodeStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from edge_provisioner.engine.operations import Operation

logger = logging.getLogger(__name__)


class OperationRunner(Protocol):
    """Callbacks the scheduler drives for each operation.

    ``prepare``, ``commit`` and ``fail`` run on the scheduling thread;
    ``execute`` runs on a worker thread.
    """

    def prepare(self, op: Operation) -> None: ...

    def execute(self, op: Operation) -> Any: ...

    def commit(self, op: Operation, outcome: Any) -> None: ...

    def fail(self, op: Operation, error: BaseException) -> None: ...


@dataclass
class Outcome:
    status: NodeStatus
    error: str | None = None
    blocked_by: str | None = None


@dataclass
class ScheduleReport:
    outcomes: dict[str, Outcome]
    interrupted: bool = False

    @property
    def canceled(self) -> bool:
        return any(o.status == NodeStatus.CANCELED for o in self.outcomes.values())


class Scheduler:
    """Run operations as soon as their dependencies have succeeded.

    At most *parallelism* operations are in flight. Among ready operations
    the one listed first in *operations* starts first. A failed operation
    blocks everything that transitively depends on it, except through
    operations that tolerate failed dependencies (ordering barriers).
    Setting *cancel* stops new operations from starting; in-flight ones are
    allowed to finish and the rest are reported as canceled.
    """

    def __init__(
        self,
        operations: Sequence[Operation],
        *,
        parallelism: int = 10,
        cancel: threading.Event | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self._ops = {op.key: op for op in operations}
        self._position = {op.key: i for i, op in enumerate(operations)}
        self._graph = DependencyGraph(
            [op.key for op in operations], {op.key: op.deps for op in operations}
        )
        # Raises CycleError before anything runs.
        self._graph.topological_order()
        self._parallelism = parallelism
        self._cancel = cancel or threading.Event()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def run(self, runner: OperationRunner) -> ScheduleReport:
        self._outcomes: dict[str, Outcome] = {}
        self._waiting = {k: self._graph.dependencies_of(k) for k in self._ops}
        self._ready: list[tuple[int, str]] = [
            (self._position[k], k) for k, deps in self._waiting.items() if not deps
        ]
        heapq.heapify(self._ready)
        interrupted = False

        inflight: dict[Future[Any], str] = {}
        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="edge-apply"
        ) as pool:
            try:
                while True:
                    self._submit_ready(pool, inflight, runner)
                    if not inflight:
                        break
                    done, _ = wait(inflight, return_when=FIRST_COMPLETED)
                    self._collect(done, inflight, runner)
            except KeyboardInterrupt:
                logger.warning("Interrupted; waiting for %d in-flight operation(s)", len(inflight))
                interrupted = True
                self._cancel.set()
                done, _ = wait(inflight)
                self._collect(done, inflight, runner)

        for key in self._ops:
            if key not in self._outcomes:
                self._outcomes[key] = Outcome(NodeStatus.CANCELED)
        return ScheduleReport(outcomes=self._outcomes, interrupted=interrupted)

    def _submit_ready(
        self,
        pool: ThreadPoolExecutor,
        inflight: dict[Future[Any], str],
        runner: OperationRunner,
    ) -> None:
        while self._ready and len(inflight) < self._parallelism:
            if self._cancel.is_set():
                return
            _, key = heapq.heappop(self._ready)
            op = self._ops[key]
            try:
                runner.prepare(op)
            except Exception as e:
                self._fail(op, e, runner)
                continue
            inflight[pool.submit(runner.execute, op)] = key

    def _collect(
        self,
        done: set[Future[Any]],
        inflight: dict[Future[Any], str],
        runner: OperationRunner,
    ) -> None:
        for fut in sorted(done, key=lambda f: self._position[inflight[f]]):
            op = self._ops[inflight.pop(fut)]
            try:
                runner.commit(op, fut.result())
            except Exception as e:
                self._fail(op, e, runner)
                continue
            self._outcomes[op.key] = Outcome(NodeStatus.APPLIED)
            self._settle(op.key, failed_root=None)

    def _fail(self, op: Operation, error: Exception, runner: OperationRunner) -> None:
        logger.debug("Operation %s failed: %s", op.key, error)
        self._outcomes[op.key] = Outcome(NodeStatus.FAILED, error=str(error))
        runner.fail(op, error)
        self._settle(op.key, failed_root=op.key)

    def _settle(self, key: str, *, failed_root: str | None) -> None:
        """Release dependents of a finished operation, blocking them on failure."""
        for dependent in sorted(self._graph.dependents_of(key), key=self._position.__getitem__):
            if dependent in self._outcomes:
                continue
            waiting = self._waiting[dependent]
            waiting.discard(key)
            if failed_root is not None and not self._ops[dependent].tolerates_failed_deps:
                self._outcomes[dependent] = Outcome(NodeStatus.BLOCKED, blocked_by=failed_root)
                self._settle(dependent, failed_root=failed_root)
            elif not waiting:
                heapq.heappush(self._ready, (self._position[dependent], dependent))

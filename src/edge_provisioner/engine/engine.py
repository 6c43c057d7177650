"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import functools
import hashlib
import json
import logging
import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from edge_provisioner import __version__
from edge_provisioner.core.state import State, compute_attributes_hash, compute_state_digest
from edge_provisioner.engine.builder import build_graph
from edge_provisioner.engine.errors import (
    ApplyCanceled,
    StalePlanError,
    StateMismatchError,
    ValidationError,
)
from edge_provisioner.engine.graph import DependencyGraph
from edge_provisioner.engine.handlers import EngineContext, PlanContext
from edge_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    UpdateOperation,
)
from edge_provisioner.engine.retry import RetryCounter, RetryPolicy, call_with_retry
from edge_provisioner.engine.scheduler import Scheduler
from edge_provisioner.engine.store import StateStore
from edge_provisioner.engine.types import (
    Action,
    ApplyResult,
    NodeResult,
    Plan,
    PlanMetadata,
    ResourceChange,
)
from edge_provisioner.resources.expressions import UNKNOWN, contains_unknown, resolve_expressions
from edge_provisioner.resources.markers import CompareStrategy, collect_compare_strategies

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done", "failed"]], None]

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence
    from pathlib import Path

    from edge_provisioner.core.provider import CloudProvider
    from edge_provisioner.core.state import ResourceInstance
    from edge_provisioner.engine.builder import ResourceGraph
    from edge_provisioner.engine.operations import Operation
    from edge_provisioner.engine.registry import ResourceTypeRegistry
    from edge_provisioner.engine.store import StateSession
    from edge_provisioner.resources.base import Resource
    from edge_provisioner.resources.expressions import OutputRef

# Every delete waits for this node, which waits for every create/update.
_BARRIER_KEY = "__engine__.apply_barrier"

_OPERATION_TYPES: dict[Action, type[CreateOperation | UpdateOperation | DeleteOperation]] = {
    Action.CREATE: CreateOperation,
    Action.UPDATE: UpdateOperation,
    Action.DELETE: DeleteOperation,
}


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Whether a planned value differs from the stored one.

    ``set`` compares lists as multisets and ``exact`` uses plain equality.
    The default (``partial``) only looks at the keys a desired dict declares,
    so keys the provider adds are not treated as drift. Unknown values
    always differ.
    """
    if contains_unknown(desired):
        return True
    match strategy:
        case "set" if isinstance(desired, list) and isinstance(prior, list):
            return Counter(map(_canonical_json, desired)) != Counter(map(_canonical_json, prior))
        case "set" | "exact":
            return desired != prior
    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="exact") for k, v in desired.items())
    return desired != prior


def _config_digest(resources: Sequence[Resource]) -> str:
    declared = {
        r.address: [
            r.resource_type,
            r.model_dump(mode="json", exclude_none=True, exclude={"address"}),
        ]
        for r in resources
    }
    return hashlib.sha256(_canonical_json(declared).encode("utf-8")).hexdigest()


def _check_plan_is_current(plan: Plan, state: State) -> None:
    """Raise :class:`StalePlanError` if *state* moved on since *plan* was made."""
    meta = plan.metadata
    checks = (
        ("lineage", state.lineage, meta.state_lineage),
        ("serial", state.serial, meta.state_serial),
        ("digest", compute_state_digest(state), meta.state_digest),
    )
    for label, current, planned in checks:
        if current != planned:
            raise StalePlanError(f"State {label} changed; re-run plan")


def _operations_for(plan: Plan, state: State) -> list[Operation]:
    """One operation per actionable change, in plan order, wired with its deps.

    Creates and updates follow the declared dependencies. Deletes invert the
    dependencies recorded in state, so dependents go first. When a plan has
    both, a barrier keeps every delete behind every create/update.
    """
    ops: dict[str, Operation] = {}
    for change in plan.changes:
        if change.action == Action.NOOP:
            continue
        if change.address in ops or change.address == _BARRIER_KEY:
            raise ValueError(f"Duplicate operation key in plan: {change.address}")
        ops[change.address] = _OPERATION_TYPES[change.action](key=change.address, change=change)

    upserts = {k for k, op in ops.items() if op.change.action != Action.DELETE}
    deletes = set(ops) - upserts

    for key in upserts:
        desired = ops[key].change.desired
        deps = (desired or {}).get("depends_on")
        if desired is None or not isinstance(deps, list):
            raise ValueError(f"Change {key} carries no resolved dependency list")
        ops[key].deps.extend(d for d in deps if d in upserts)

    for key in deletes:
        if key not in state.resources:
            raise ValueError(f"Missing state for delete operation: {key}")
        for dep in state.resources[key].dependencies:
            if dep in deletes:
                ops[dep].deps.append(key)

    if upserts and deletes:
        ops[_BARRIER_KEY] = BarrierOperation(key=_BARRIER_KEY, deps=sorted(upserts))
        for key in deletes:
            ops[key].deps.append(_BARRIER_KEY)
    return list(ops.values())


class _ApplyRunner:
    """Scheduler callbacks for one apply run."""

    def __init__(
        self,
        *,
        ctx: EngineContext,
        registry: ResourceTypeRegistry,
        session: StateSession,
        policy: RetryPolicy,
        sleep: Callable[[float], None],
        progress: ProgressCallback | None,
    ) -> None:
        self._ctx = ctx
        self._registry = registry
        self._session = session
        self._policy = policy
        self._sleep = sleep
        self._progress = progress
        self.counters: dict[str, RetryCounter] = {}
        self.applied: list[ResourceChange] = []

    def prepare(self, op: Operation) -> None:
        self.counters[op.key] = RetryCounter()
        if op.change is not None:
            logger.debug("Applying %s: %s", op.key, op.change.action.value)
            if self._progress:
                self._progress(op.change, "start")
        op.prepare(state=self._session.state, registry=self._registry)

    def execute(self, op: Operation) -> Any:
        retry = functools.partial(
            call_with_retry,
            policy=self._policy,
            label=op.key,
            sleep=self._sleep,
            counter=self.counters[op.key],
        )
        return op.run(ctx=self._ctx, retry=retry)

    def commit(self, op: Operation, outcome: Any) -> None:
        if not op.commit(state=self._session.state, outcome=outcome):
            return
        assert op.change is not None
        self._session.commit()
        self.applied.append(op.change)
        if self._progress:
            self._progress(op.change, "done")

    def fail(self, op: Operation, error: BaseException) -> None:
        logger.warning("Apply failed on %s: %s", op.key, error)
        if op.change is not None and self._progress:
            self._progress(op.change, "failed")

    def node_results(self, ops: list[Operation], report: Any) -> list[NodeResult]:
        results = []
        for op in ops:
            if op.change is None:
                continue
            outcome = report.outcomes[op.key]
            counter = self.counters.get(op.key)
            results.append(
                NodeResult(
                    address=op.key,
                    action=op.change.action,
                    status=outcome.status,
                    error=outcome.error,
                    blocked_by=outcome.blocked_by,
                    attempts=counter.attempts if counter else 0,
                )
            )
        return results


class EdgeEngine:
    """Terraform-like plan/apply engine for edge resources."""

    def __init__(
        self,
        *,
        provider: CloudProvider,
        stack: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        parallelism: int = 10,
        retry: RetryPolicy | None = None,
        lock_timeout: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._stack = stack
        self._state_path = state_path
        self._registry = registry
        self._parallelism = parallelism
        self._retry = retry or RetryPolicy()
        self._sleep = sleep
        self._store = StateStore(state_path, stack, lock_timeout=lock_timeout)

    @property
    def stack(self) -> str:
        return self._stack

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def store(self) -> StateStore:
        return self._store

    def _ctx(self) -> EngineContext:
        return EngineContext(provider=self._provider, stack=self._stack)

    # -- refresh -------------------------------------------------------------

    def _read_live(self, ctx: EngineContext, inst: ResourceInstance) -> dict[str, Any] | None:
        handler = self._registry.get(inst.resource_type).handler
        return call_with_retry(
            lambda: handler.read(ctx, inst), self._retry, label=inst.address, sleep=self._sleep
        )

    def _sync_with_provider(self, state: State) -> bool:
        """Overwrite stored attributes with live ones; drop vanished resources.

        Returns whether anything in *state* changed.
        """
        ctx = self._ctx()
        changed = False
        for address, inst in list(state.resources.items()):
            live = self._read_live(ctx, inst)
            if live is None:
                logger.info("%s no longer exists; removing from state", address)
                state.resources.pop(address)
                changed = True
                continue
            live_hash = compute_attributes_hash(live)
            if live == inst.attributes and live_hash == inst.attributes_hash:
                continue
            logger.debug("%s drifted from state", address)
            inst.attributes, inst.attributes_hash = live, live_hash
            inst.updated_at = datetime.now(UTC)
            changed = True
        logger.debug("Refreshed %d resource(s), changed=%s", len(state.resources), changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Re-read every tracked resource. Returns ``(before, after)``.

        With *persist* the refreshed state is committed when it changed.
        """
        with self._store.session() as session:
            before = session.state.model_copy(deep=True)
            if self._sync_with_provider(session.state) and persist:
                session.commit()
            return before, session.state

    # -- plan ----------------------------------------------------------------

    def graph(self, resources: Sequence[Resource]) -> ResourceGraph:
        """Build and check the dependency graph without planning."""
        return build_graph(resources, self._registry)

    def _validate(self, graph: ResourceGraph, state: State) -> None:
        ctx = self._ctx()
        declared = {address: node.resource for address, node in graph.nodes.items()}
        plan_ctx = PlanContext(declared, state)
        errors: list[str] = []
        for resource in declared.values():
            handler = self._registry.get(resource.resource_type).handler
            errors.extend(handler.validate(ctx, resource))
        for resource in declared.values():
            handler = self._registry.get(resource.resource_type).handler
            errors.extend(handler.validate_plan(ctx, resource, plan_ctx))
        if errors:
            raise ValidationError(errors)

    def _planned_lookup(
        self, planned_by_addr: dict[str, dict[str, Any]], state: State
    ) -> Callable[[OutputRef], Any]:
        """Plan-time expression lookup: planned field, then state, then unknown."""

        def _lookup(ref: OutputRef) -> Any:
            model = self._registry.get(ref.resource_type).model
            planned = planned_by_addr.get(ref.address, {})
            if ref.attribute in model.model_fields and planned.get(ref.attribute) is not None:
                return planned[ref.attribute]
            inst = state.resources.get(ref.address)
            if inst is not None and inst.attributes.get(ref.attribute) is not None:
                return inst.attributes[ref.attribute]
            return UNKNOWN

        return _lookup

    def _diff_declared(
        self,
        resource: Resource,
        deps: list[str],
        state: State,
        lookup: Callable[[OutputRef], Any],
    ) -> ResourceChange:
        """CREATE, UPDATE or NOOP for one declared resource."""
        fields = resource.model_dump(
            mode="json", exclude_none=True, exclude={"address", "depends_on"}
        )
        planned = resolve_expressions(fields, lookup)
        change = ResourceChange(
            address=resource.address,
            resource_type=resource.resource_type,
            action=Action.CREATE,
            desired={**fields, "depends_on": deps},
            planned=planned,
        )
        inst = state.resources.get(resource.address)
        if inst is not None:
            strategies = collect_compare_strategies(resource)
            # Unset optional fields compare as None; provider outputs stay as read.
            cleared = {
                key: None
                for key in type(resource).model_fields
                if key not in planned and key != "depends_on" and key not in resource.outputs
            }
            diff = {
                key: {"from": inst.attributes.get(key), "to": value}
                for key, value in {**planned, **cleared}.items()
                if _values_differ(value, inst.attributes.get(key), strategy=strategies.get(key))
            }
            change.action = Action.UPDATE if diff else Action.NOOP
            change.prior = dict(inst.attributes)
            change.diff = diff or None
        logger.debug("Classified %s as %s", change.address, change.action.value)
        return change

    def _plan_deletes(self, state: State, addresses: set[str]) -> list[ResourceChange]:
        """DELETE changes for *addresses*, dependents before their dependencies."""
        recorded = {
            a: [d for d in state.resources[a].dependencies if d in addresses]
            for a in sorted(addresses)
        }
        changes = []
        for address in DependencyGraph(list(recorded), recorded).reverse_topological_order():
            inst = state.resources[address]
            self._registry.get(inst.resource_type)  # unknown types fail at plan time
            logger.debug("Classified %s as delete", address)
            changes.append(
                ResourceChange(
                    address=address,
                    resource_type=inst.resource_type,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                )
            )
        return changes

    def _plan_changes(self, graph: ResourceGraph, state: State) -> list[ResourceChange]:
        self._validate(graph, state)
        planned_by_addr: dict[str, dict[str, Any]] = {}
        lookup = self._planned_lookup(planned_by_addr, state)
        changes = []
        for address in graph.order:
            change = self._diff_declared(
                graph.nodes[address].resource, graph.dependencies(address), state, lookup
            )
            planned_by_addr[address] = change.planned or {}
            changes.append(change)
        orphans = set(state.resources) - set(graph.nodes)
        return changes + self._plan_deletes(state, orphans)

    def plan(
        self, resources: Sequence[Resource], *, destroy: bool = False, refresh: bool = False
    ) -> Plan:
        """Compute the changes that reconcile *resources* with stored state.

        Graph and validation errors are raised before anything else happens.
        With ``refresh`` the tracked resources are first re-read from the
        provider (under the state lock) and the refreshed state is persisted.
        """
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        graph = None if destroy else build_graph(resources, self._registry)

        with self._store.session() if refresh else contextlib.nullcontext() as session:
            if session is None:
                state = self._store.read()
            else:
                state = session.state
                if self._sync_with_provider(state):
                    session.commit()

            if graph is None:
                changes = self._plan_deletes(state, set(state.resources))
            else:
                changes = self._plan_changes(graph, state)

            plan = Plan(
                metadata=PlanMetadata(
                    stack=self._stack,
                    destroy=destroy,
                    refresh=refresh,
                    state_lineage=state.lineage,
                    state_serial=state.serial,
                    state_digest=compute_state_digest(state),
                    config_digest=_config_digest([] if destroy else resources),
                    engine_version=__version__,
                ),
                changes=changes,
            )
        logger.info("Plan: %s", plan.summary())
        return plan

    # -- apply ---------------------------------------------------------------

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> ApplyResult:
        """Apply *plan*, continuing past failures in unrelated branches.

        Returns an :class:`ApplyResult` with one node result per operation;
        check ``result.ok``. Raises :class:`ApplyCanceled` (carrying the
        partial result) on Ctrl-C, after in-flight operations finish.
        """
        # Used only when no state file exists yet, so a plan made against an
        # empty state applies to the same lineage.
        bootstrap = State(
            stack=self._stack,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )
        with self._store.session(bootstrap=bootstrap) as session:
            if session.state.stack != self._stack:
                raise StateMismatchError(self._stack, session.state.stack)
            _check_plan_is_current(plan, session.state)

            ops = _operations_for(plan, session.state)
            runner = _ApplyRunner(
                ctx=self._ctx(),
                registry=self._registry,
                session=session,
                policy=self._retry,
                sleep=self._sleep,
                progress=progress,
            )
            logger.info(
                "Applying %d operations (parallelism=%d)",
                sum(op.change is not None for op in ops),
                self._parallelism,
            )
            report = Scheduler(ops, parallelism=self._parallelism, cancel=cancel).run(runner)

            result = ApplyResult(
                applied=runner.applied,
                nodes=runner.node_results(ops, report),
                canceled=report.canceled,
            )
            if result.failed:
                logger.warning(
                    "Apply finished with %d failed and %d blocked operation(s)",
                    len(result.failed),
                    len(result.blocked),
                )
            if report.interrupted:
                raise ApplyCanceled("Apply canceled", result=result)
            return result

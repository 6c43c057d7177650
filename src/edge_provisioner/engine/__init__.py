"""Plan and apply engine for edge resources."""

from edge_provisioner.engine.builder import Edge, ResourceGraph, ResourceNode, build_graph
from edge_provisioner.engine.engine import EdgeEngine
from edge_provisioner.engine.errors import (
    ApplyCanceled,
    ConflictError,
    CycleError,
    DuplicateAddressError,
    EngineError,
    ProviderError,
    StalePlanError,
    StateLockError,
    StateMismatchError,
    TransientProviderError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from edge_provisioner.engine.handlers import EngineContext, PlanContext, ResourceHandler
from edge_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from edge_provisioner.engine.retry import RetryPolicy
from edge_provisioner.engine.types import (
    Action,
    ApplyResult,
    NodeResult,
    NodeStatus,
    Plan,
    PlanMetadata,
    ResourceChange,
)

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyResult",
    "ConflictError",
    "CycleError",
    "DuplicateAddressError",
    "Edge",
    "EdgeEngine",
    "EngineContext",
    "EngineError",
    "NodeResult",
    "NodeStatus",
    "Plan",
    "PlanContext",
    "PlanMetadata",
    "ProviderError",
    "ResourceChange",
    "ResourceGraph",
    "ResourceHandler",
    "ResourceNode",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryPolicy",
    "StalePlanError",
    "StateLockError",
    "StateMismatchError",
    "TransientProviderError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build_graph",
]

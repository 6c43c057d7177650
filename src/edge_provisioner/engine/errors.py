"""Exceptions raised by graph building, planning, locking and apply."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from edge_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    pass


class UnknownResourceTypeError(EngineError):
    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        super().__init__(f"Unknown resource type: {resource_type}")


class DuplicateAddressError(EngineError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Duplicate resource address: {address}")


class CycleError(EngineError):
    """The dependency graph has a cycle; ``addresses`` lists its members in order."""

    def __init__(self, addresses: list[str]) -> None:
        self.addresses = addresses
        members = f": {', '.join(addresses)}" if addresses else ""
        super().__init__(f"Dependency cycle detected{members}")


class UnresolvedReferenceError(EngineError):
    """``references`` holds one ``(source address, reference)`` pair per dangling reference."""

    def __init__(self, references: list[tuple[str, str]]) -> None:
        self.references = references
        listing = "".join(f"\n  - {src} -> {ref}" for src, ref in references)
        super().__init__(f"Unresolved references:{listing}")


class StateMismatchError(EngineError):
    """The state file was written for another stack."""

    def __init__(self, expected: str, got: str) -> None:
        self.expected = expected
        self.got = got
        super().__init__(f"State stack mismatch: expected {expected}, got {got}")


class StalePlanError(EngineError):
    """State moved on between plan and apply."""


class StateLockError(EngineError):
    pass


class ConflictError(StateLockError):
    """Someone else holds the state lock. ``holder`` describes them when known."""

    def __init__(self, lock_path: str, holder: str | None = None) -> None:
        self.lock_path = lock_path
        self.holder = holder
        suffix = f" (held by {holder})" if holder else ""
        super().__init__(f"State is locked: {lock_path}{suffix}")


class ValidationError(EngineError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Validation failed:" + "".join(f"\n  - {e}" for e in errors))


class ProviderError(EngineError):
    """A provider call failed. ``status`` is the HTTP-style code, if any.

    Only subclasses with ``retryable = True`` are retried.
    """

    retryable: bool = False

    def __init__(self, message: str, *, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Rate limiting or a 5xx; worth another attempt."""

    retryable = True


class ApplyCanceled(EngineError):
    """Apply interrupted by Ctrl-C.

    ``result`` carries what finished before the interrupt and the
    operations that never started.
    """

    def __init__(self, message: str, *, result: ApplyResult | None = None) -> None:
        self.result = result
        super().__init__(message)

"""Core infrastructure components for edge-provisioner."""

from edge_provisioner.core.cloud import CloudClient, LocalCloud
from edge_provisioner.core.provider import CloudProvider
from edge_provisioner.core.state import ResourceInstance, State

__all__ = ["CloudClient", "CloudProvider", "LocalCloud", "ResourceInstance", "State"]

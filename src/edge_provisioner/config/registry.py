"""Default resource type registry factory."""

from __future__ import annotations

from edge_provisioner.engine.cloud_handler import (
    CertificateHandler,
    CloudResourceHandler,
    DnsRecordHandler,
    ForwardingRuleHandler,
)
from edge_provisioner.engine.registry import ResourceTypeRegistry
from edge_provisioner.resources.certificate import ManagedSslCertificateResource
from edge_provisioner.resources.dns import DnsRecordSetResource
from edge_provisioner.resources.network import BackendServiceResource, NetworkEndpointGroupResource
from edge_provisioner.resources.routing import (
    GlobalAddressResource,
    GlobalForwardingRuleResource,
    TargetHttpProxyResource,
    TargetHttpsProxyResource,
    UrlMapResource,
)


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    for model in (
        NetworkEndpointGroupResource,
        BackendServiceResource,
        UrlMapResource,
        TargetHttpProxyResource,
        TargetHttpsProxyResource,
        GlobalAddressResource,
    ):
        registry.register(model, CloudResourceHandler(model))

    registry.register(
        ManagedSslCertificateResource, CertificateHandler(ManagedSslCertificateResource)
    )
    registry.register(
        GlobalForwardingRuleResource, ForwardingRuleHandler(GlobalForwardingRuleResource)
    )
    registry.register(DnsRecordSetResource, DnsRecordHandler(DnsRecordSetResource))

    return registry

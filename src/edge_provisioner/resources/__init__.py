"""Edge resource definitions."""

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.certificate import ManagedSslCertificateResource
from edge_provisioner.resources.dns import DnsRecordSetResource
from edge_provisioner.resources.network import (
    BackendServiceResource,
    CdnPolicy,
    Endpoint,
    NetworkEndpointGroupResource,
)
from edge_provisioner.resources.routing import (
    GlobalAddressResource,
    GlobalForwardingRuleResource,
    HostRule,
    PathMatcher,
    PathRule,
    TargetHttpProxyResource,
    TargetHttpsProxyResource,
    UrlMapResource,
)

__all__ = [
    "BackendServiceResource",
    "CdnPolicy",
    "DnsRecordSetResource",
    "Endpoint",
    "GlobalAddressResource",
    "GlobalForwardingRuleResource",
    "HostRule",
    "ManagedSslCertificateResource",
    "NetworkEndpointGroupResource",
    "PathMatcher",
    "PathRule",
    "Resource",
    "TargetHttpProxyResource",
    "TargetHttpsProxyResource",
    "UrlMapResource",
]

"""Module examples used by examples/shop/edge-provisioner.yaml."""

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.network import (
    BackendServiceResource,
    CdnPolicy,
    NetworkEndpointGroupResource,
)


def cloud_run_backend(
    *,
    name: str,
    service: str,
    region: str = "europe-west1",
    cdn_ttl: int | None = None,
) -> list[Resource]:
    """Create a serverless endpoint group and the backend service in front of it."""
    neg_name = f"{name}-neg"
    return [
        NetworkEndpointGroupResource(
            name=neg_name,
            region=region,
            cloud_run_service=service,
            description=f"Cloud Run service {service}",
        ),
        BackendServiceResource(
            name=name,
            backends=[neg_name],
            enable_cdn=cdn_ttl is not None,
            cdn_policy=CdnPolicy(default_ttl=cdn_ttl) if cdn_ttl is not None else None,
        ),
    ]

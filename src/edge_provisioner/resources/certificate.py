"""Managed SSL certificate resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar

from pydantic import Field

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.markers import ApiField, Compare

_Domain = Annotated[str, Field(min_length=1, max_length=253)]


class ManagedSslCertificateResource(Resource):
    """A provider-managed SSL certificate.

    Issuance happens asynchronously on the provider side; ``status`` is
    exposed as an output but the engine does not wait for it.
    """

    resource_type: ClassVar[str] = "managed_ssl_certificate"
    api_kind: ClassVar[str] = "sslCertificates"
    outputs: ClassVar[tuple[str, ...]] = ("id", "self_link", "status")

    domains: Annotated[list[_Domain], ApiField("managed.domains"), Compare("set")] = Field(
        min_length=1
    )

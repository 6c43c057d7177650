"""Network endpoint group and backend service resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.markers import ApiField, Compare, Ref

EndpointType = Literal["SERVERLESS", "INTERNET_FQDN_PORT", "INTERNET_IP_PORT", "GCE_VM_IP_PORT"]
CacheMode = Literal["CACHE_ALL_STATIC", "USE_ORIGIN_HEADERS", "FORCE_CACHE_ALL"]


class Endpoint(BaseModel):
    """A single endpoint of an internet network endpoint group."""

    model_config = ConfigDict(extra="forbid")

    fqdn: str | None = None
    ip_address: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)

    @model_validator(mode="after")
    def _check_target(self) -> Self:
        if (self.fqdn is None) == (self.ip_address is None):
            msg = "Endpoint needs exactly one of 'fqdn' or 'ip_address'"
            raise ValueError(msg)
        return self


class NetworkEndpointGroupResource(Resource):
    """A network endpoint group (NEG).

    Serverless NEGs front a Cloud Run service; internet NEGs point at
    external FQDN or IP endpoints.
    """

    resource_type: ClassVar[str] = "network_endpoint_group"
    api_kind: ClassVar[str] = "networkEndpointGroups"

    endpoint_type: Annotated[EndpointType, ApiField("networkEndpointType")] = "SERVERLESS"
    region: str | None = None
    default_port: Annotated[int | None, ApiField("defaultPort")] = Field(
        default=None, ge=1, le=65535
    )
    cloud_run_service: Annotated[str | None, ApiField("cloudRun.service")] = None
    endpoints: Annotated[list[Endpoint], Compare("exact")] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_endpoint_type(self) -> Self:
        if self.endpoint_type == "SERVERLESS":
            if not self.cloud_run_service:
                msg = "SERVERLESS endpoint groups require 'cloud_run_service'"
                raise ValueError(msg)
            if self.region is None:
                msg = "SERVERLESS endpoint groups require 'region'"
                raise ValueError(msg)
            if self.endpoints:
                msg = "SERVERLESS endpoint groups cannot declare 'endpoints'"
                raise ValueError(msg)
        elif self.endpoint_type == "INTERNET_FQDN_PORT":
            if any(e.fqdn is None for e in self.endpoints):
                msg = "INTERNET_FQDN_PORT endpoints must set 'fqdn'"
                raise ValueError(msg)
        elif self.endpoint_type == "INTERNET_IP_PORT" and any(
            e.ip_address is None for e in self.endpoints
        ):
            msg = "INTERNET_IP_PORT endpoints must set 'ip_address'"
            raise ValueError(msg)
        return self


class CdnPolicy(BaseModel):
    """Cache behaviour for a CDN-enabled backend service."""

    model_config = ConfigDict(extra="forbid")

    cache_mode: CacheMode = "CACHE_ALL_STATIC"
    default_ttl: int | None = Field(default=None, ge=0)
    client_ttl: int | None = Field(default=None, ge=0)
    max_ttl: int | None = Field(default=None, ge=0)
    negative_caching: bool = False
    serve_while_stale: int | None = Field(default=None, ge=0, le=86400)
    signed_url_cache_max_age_sec: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_ttls(self) -> Self:
        if self.cache_mode == "USE_ORIGIN_HEADERS" and any(
            t is not None for t in (self.default_ttl, self.client_ttl, self.max_ttl)
        ):
            msg = "USE_ORIGIN_HEADERS cache mode does not accept TTL overrides"
            raise ValueError(msg)
        if self.max_ttl is not None:
            for label, ttl in (("default_ttl", self.default_ttl), ("client_ttl", self.client_ttl)):
                if ttl is not None and ttl > self.max_ttl:
                    msg = f"{label} ({ttl}) cannot exceed max_ttl ({self.max_ttl})"
                    raise ValueError(msg)
        return self


class BackendServiceResource(Resource):
    """A global backend service, optionally fronted by the CDN."""

    resource_type: ClassVar[str] = "backend_service"
    api_kind: ClassVar[str] = "backendServices"

    backends: Annotated[list[str], Ref("network_endpoint_group"), Compare("set")] = Field(
        min_length=1
    )
    protocol: Literal["HTTP", "HTTPS", "HTTP2"] = "HTTPS"
    port_name: Annotated[str | None, ApiField("portName")] = None
    timeout_sec: Annotated[int, ApiField("timeoutSec")] = Field(default=30, ge=1, le=86400)
    load_balancing_scheme: Annotated[
        Literal["EXTERNAL", "EXTERNAL_MANAGED"], ApiField("loadBalancingScheme")
    ] = "EXTERNAL_MANAGED"
    enable_cdn: Annotated[bool, ApiField("enableCDN")] = False
    cdn_policy: Annotated[CdnPolicy | None, ApiField("cdnPolicy")] = None
    custom_response_headers: Annotated[list[str], ApiField("customResponseHeaders")] = Field(
        default_factory=list
    )

    @model_validator(mode="after")
    def _check_cdn(self) -> Self:
        if self.cdn_policy is not None and not self.enable_cdn:
            msg = "'cdn_policy' requires 'enable_cdn: true'"
            raise ValueError(msg)
        return self

"""URL map, target proxy, address and forwarding rule resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.markers import ApiField, Compare, Ref, ResourceRef

_NonEmptyStr = Annotated[str, Field(min_length=1)]


class PathRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paths: list[_NonEmptyStr] = Field(min_length=1)
    service: str


class PathMatcher(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    default_service: str
    path_rules: list[PathRule] = Field(default_factory=list)


class HostRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hosts: list[_NonEmptyStr] = Field(min_length=1)
    path_matcher: str


class UrlMapResource(Resource):
    """A URL map routing hosts and paths to backend services.

    Either ``default_service`` routes unmatched traffic, or ``https_redirect``
    turns the map into a plain HTTP → HTTPS redirect.
    """

    resource_type: ClassVar[str] = "url_map"
    api_kind: ClassVar[str] = "urlMaps"

    default_service: Annotated[str | None, Ref("backend_service"), ApiField("defaultService")] = (
        None
    )
    https_redirect: Annotated[bool, ApiField("defaultUrlRedirect.httpsRedirect")] = False
    host_rules: Annotated[list[HostRule], ApiField("hostRules"), Compare("exact")] = Field(
        default_factory=list
    )
    path_matchers: Annotated[list[PathMatcher], ApiField("pathMatchers"), Compare("exact")] = (
        Field(default_factory=list)
    )

    @model_validator(mode="after")
    def _check_routing(self) -> Self:
        if (self.default_service is None) == (not self.https_redirect):
            msg = "Exactly one of 'default_service' or 'https_redirect' must be set"
            raise ValueError(msg)
        if self.https_redirect and (self.host_rules or self.path_matchers):
            msg = "Redirect URL maps cannot declare host rules or path matchers"
            raise ValueError(msg)

        matcher_names = [m.name for m in self.path_matchers]
        if len(set(matcher_names)) != len(matcher_names):
            msg = "Path matcher names must be unique"
            raise ValueError(msg)
        for rule in self.host_rules:
            if rule.path_matcher not in matcher_names:
                msg = f"Host rule references unknown path matcher '{rule.path_matcher}'"
                raise ValueError(msg)
        return self

    def references(self) -> list[ResourceRef]:
        refs = super().references()
        for matcher in self.path_matchers:
            services = [matcher.default_service, *(r.service for r in matcher.path_rules)]
            refs.extend(ResourceRef(name=s, resource_type="backend_service") for s in services)
        return refs


class TargetHttpProxyResource(Resource):
    """A target HTTP proxy (usually bound to a redirect URL map)."""

    resource_type: ClassVar[str] = "target_http_proxy"
    api_kind: ClassVar[str] = "targetHttpProxies"

    url_map: Annotated[str, Ref("url_map"), ApiField("urlMap")]


class TargetHttpsProxyResource(Resource):
    """A target HTTPS proxy terminating TLS with managed certificates."""

    resource_type: ClassVar[str] = "target_https_proxy"
    api_kind: ClassVar[str] = "targetHttpsProxies"

    url_map: Annotated[str, Ref("url_map"), ApiField("urlMap")]
    ssl_certificates: Annotated[
        list[str], Ref("managed_ssl_certificate"), ApiField("sslCertificates")
    ] = Field(min_length=1, max_length=15)
    quic_override: Annotated[Literal["NONE", "ENABLE", "DISABLE"], ApiField("quicOverride")] = (
        "NONE"
    )


class GlobalAddressResource(Resource):
    """A reserved global static IP address."""

    resource_type: ClassVar[str] = "global_address"
    api_kind: ClassVar[str] = "globalAddresses"
    outputs: ClassVar[tuple[str, ...]] = ("id", "self_link", "address")

    ip_version: Annotated[Literal["IPV4", "IPV6"], ApiField("ipVersion")] = "IPV4"


class GlobalForwardingRuleResource(Resource):
    """A global forwarding rule sending an IP:port to a target proxy."""

    resource_type: ClassVar[str] = "global_forwarding_rule"
    api_kind: ClassVar[str] = "globalForwardingRules"
    outputs: ClassVar[tuple[str, ...]] = ("id", "self_link", "ip_address")

    target: Annotated[str, Ref(("target_http_proxy", "target_https_proxy"))]
    port_range: Annotated[str, ApiField("portRange")] = Field(
        default="443", pattern=r"^\d{1,5}(-\d{1,5})?$"
    )
    ip_address: Annotated[str | None, ApiField("IPAddress")] = None
    load_balancing_scheme: Annotated[
        Literal["EXTERNAL", "EXTERNAL_MANAGED"], ApiField("loadBalancingScheme")
    ] = "EXTERNAL_MANAGED"

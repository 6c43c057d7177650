"""Generic handler implementing CRUD against the provider's cloud API."""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING, Any

from edge_provisioner.engine.handlers import ResourceHandler
from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.expressions import UNKNOWN, find_expressions
from edge_provisioner.resources.markers import build_api_body, extract_api_attrs

if TYPE_CHECKING:
    from edge_provisioner.core.cloud import CloudClient
    from edge_provisioner.core.state import ResourceInstance
    from edge_provisioner.engine.handlers import EngineContext, PlanContext
    from edge_provisioner.resources.certificate import ManagedSslCertificateResource
    from edge_provisioner.resources.dns import DnsRecordSetResource
    from edge_provisioner.resources.routing import GlobalForwardingRuleResource

logger = logging.getLogger(__name__)

_LOCAL_FIELDS = frozenset({"name", "depends_on"})


class CloudResourceHandler(ResourceHandler[Resource]):
    """CRUD handler for any resource model with an ``api_kind``.

    The request body is derived from the model's ``ApiField`` markers and
    attributes are read back the same way, so stored attributes line up with
    the planner's ``model_dump`` output.
    """

    def __init__(self, model: type[Resource]) -> None:
        self.model = model

    def _client(self, ctx: EngineContext) -> CloudClient:
        return ctx.provider.client

    def _read_attrs(self, raw: dict[str, Any]) -> dict[str, Any]:
        attrs = extract_api_attrs(self.model, raw, exclude=set(_LOCAL_FIELDS))
        attrs["name"] = raw["name"]
        for output in self.model.outputs:
            if output not in attrs and output in raw:
                attrs[output] = raw[output]
        return attrs

    def create(self, ctx: EngineContext, desired: Resource) -> dict[str, Any]:
        body = build_api_body(desired, exclude=set(_LOCAL_FIELDS))
        logger.debug("Creating %s/%s", self.model.api_kind, desired.name)
        raw = self._client(ctx).insert(self.model.api_kind, desired.name, body)
        return self._read_attrs(raw)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        raw = self._client(ctx).get(self.model.api_kind, prior.name)
        if raw is None:
            return None
        return self._read_attrs(raw)

    def update(
        self, ctx: EngineContext, desired: Resource, prior: ResourceInstance
    ) -> dict[str, Any]:
        _ = prior
        body = build_api_body(desired, exclude=set(_LOCAL_FIELDS))
        logger.debug("Patching %s/%s", self.model.api_kind, desired.name)
        raw = self._client(ctx).patch(self.model.api_kind, desired.name, body)
        return self._read_attrs(raw)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        logger.debug("Deleting %s/%s", self.model.api_kind, prior.name)
        self._client(ctx).delete(self.model.api_kind, prior.name)


def _is_deferred(value: str) -> bool:
    return value == UNKNOWN or bool(find_expressions(value))


class DnsRecordHandler(CloudResourceHandler):
    def validate(  # type: ignore[override]
        self, ctx: EngineContext, desired: DnsRecordSetResource
    ) -> list[str]:
        _ = ctx
        errors: list[str] = []
        if not desired.record_name.endswith("."):
            errors.append(
                f"{desired.address}: record_name '{desired.record_name}' must be fully "
                "qualified (end with '.')"
            )
        if desired.record_type == "CNAME" and len(desired.rrdatas) != 1:
            errors.append(f"{desired.address}: CNAME records take exactly one rrdata")
        if desired.record_type in ("A", "AAAA"):
            version = 4 if desired.record_type == "A" else 6
            for value in desired.rrdatas:
                if _is_deferred(value):
                    continue
                try:
                    ip = ipaddress.ip_address(value)
                except ValueError:
                    ip = None
                if ip is None or ip.version != version:
                    errors.append(
                        f"{desired.address}: '{value}' is not a valid IPv{version} address"
                    )
        return errors


class CertificateHandler(CloudResourceHandler):
    max_domains = 100

    def validate(  # type: ignore[override]
        self, ctx: EngineContext, desired: ManagedSslCertificateResource
    ) -> list[str]:
        _ = ctx
        errors = [
            f"{desired.address}: managed certificates do not support wildcard domain '{d}'"
            for d in desired.domains
            if d.startswith("*")
        ]
        if len(desired.domains) > self.max_domains:
            errors.append(
                f"{desired.address}: at most {self.max_domains} domains per certificate"
            )
        return errors


class ForwardingRuleHandler(CloudResourceHandler):
    def validate_plan(  # type: ignore[override]
        self,
        ctx: EngineContext,
        desired: GlobalForwardingRuleResource,
        plan_ctx: PlanContext,
    ) -> list[str]:
        _ = ctx
        https = plan_ctx.find(desired.target, "target_https_proxy")
        http = plan_ctx.find(desired.target, "target_http_proxy")
        if not https and not http:
            return [f"{desired.address}: target '{desired.target}' is not a target proxy"]
        if desired.port_range == "443" and not https:
            return [
                f"{desired.address}: port 443 requires a target_https_proxy, "
                f"but '{desired.target}' is a target_http_proxy"
            ]
        return []

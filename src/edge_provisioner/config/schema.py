"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from edge_provisioner.config.modules import (
    ModuleSpec,  # noqa: TC001 (Pydantic needs this at runtime)
)
from edge_provisioner.engine.retry import RetryPolicy
from edge_provisioner.resources.base import Resource  # noqa: TC001 (Pydantic needs this at runtime)
from edge_provisioner.resources.certificate import (
    ManagedSslCertificateResource,  # noqa: TC001 (Pydantic needs this at runtime)
)
from edge_provisioner.resources.dns import (
    DnsRecordSetResource,  # noqa: TC001 (Pydantic needs this at runtime)
)
from edge_provisioner.resources.network import (
    BackendServiceResource,
    NetworkEndpointGroupResource,
)
from edge_provisioner.resources.routing import (
    GlobalAddressResource,
    GlobalForwardingRuleResource,
    TargetHttpProxyResource,
    TargetHttpsProxyResource,
    UrlMapResource,
)


class ProviderConfig(BaseSettings):
    """Cloud provider settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``EDGE_`` prefix.  Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="EDGE_")

    stack: str
    backend: Literal["local"] = "local"
    data_dir: Path = Path(".edge-cloud")


class EngineSettings(BaseModel):
    """Apply-time tuning: worker pool size, lock wait and retry budget."""

    model_config = ConfigDict(extra="forbid")

    parallelism: int = Field(default=10, ge=1)
    lock_timeout: float = Field(default=0.0, ge=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class Config(BaseModel):
    """Provisioning configuration; validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    provider: ProviderConfig
    engine: Annotated[EngineSettings, BeforeValidator(_none_to_dict)] = Field(
        default_factory=EngineSettings
    )
    state_path: Path = Path(".edge-state.json")
    locals: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    endpoint_groups: Annotated[
        list[NetworkEndpointGroupResource], BeforeValidator(_none_to_list)
    ] = []
    backend_services: Annotated[list[BackendServiceResource], BeforeValidator(_none_to_list)] = []
    url_maps: Annotated[list[UrlMapResource], BeforeValidator(_none_to_list)] = []
    http_proxies: Annotated[list[TargetHttpProxyResource], BeforeValidator(_none_to_list)] = []
    https_proxies: Annotated[list[TargetHttpsProxyResource], BeforeValidator(_none_to_list)] = []
    certificates: Annotated[
        list[ManagedSslCertificateResource], BeforeValidator(_none_to_list)
    ] = []
    addresses: Annotated[list[GlobalAddressResource], BeforeValidator(_none_to_list)] = []
    forwarding_rules: Annotated[
        list[GlobalForwardingRuleResource], BeforeValidator(_none_to_list)
    ] = []
    dns_records: Annotated[list[DnsRecordSetResource], BeforeValidator(_none_to_list)] = []
    modules: Annotated[list[ModuleSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _module_resources: list[Resource] = PrivateAttr(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources in declaration order (section, then list position)."""
        resources: list[Resource] = [
            *self.endpoint_groups,
            *self.backend_services,
            *self.url_maps,
            *self.http_proxies,
            *self.https_proxies,
            *self.certificates,
            *self.addresses,
            *self.forwarding_rules,
            *self.dns_records,
        ]
        resources.extend(self._module_resources)
        return resources

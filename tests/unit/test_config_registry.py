"""Tests for the default resource type registry factory."""

from __future__ import annotations

import pytest

from edge_provisioner.config.registry import default_registry
from edge_provisioner.config.schema import Config
from edge_provisioner.engine.cloud_handler import (
    CertificateHandler,
    CloudResourceHandler,
    DnsRecordHandler,
    ForwardingRuleHandler,
)


class TestDefaultRegistry:
    def test_every_config_section_is_registered(self) -> None:
        registry = default_registry()
        sections = [
            name
            for name in Config.model_fields
            if name not in {"provider", "engine", "state_path", "locals", "modules", "config_dir"}
        ]
        for section in sections:
            model = _section_model(section)
            assert model.resource_type in registry
            assert registry.get(model.resource_type).model is model

    @pytest.mark.parametrize(
        ("resource_type", "handler_cls"),
        [
            ("managed_ssl_certificate", CertificateHandler),
            ("global_forwarding_rule", ForwardingRuleHandler),
            ("dns_record_set", DnsRecordHandler),
        ],
    )
    def test_specialised_handlers(self, resource_type: str, handler_cls: type) -> None:
        assert isinstance(default_registry().get(resource_type).handler, handler_cls)

    def test_generic_handlers_know_their_model(self) -> None:
        registry = default_registry()
        for resource_type in registry.types():
            reg = registry.get(resource_type)
            assert isinstance(reg.handler, CloudResourceHandler)
            assert reg.handler.model is reg.model

    def test_fresh_registry_each_call(self) -> None:
        assert default_registry() is not default_registry()

    def test_types_sorted(self) -> None:
        assert default_registry().types() == [
            "backend_service",
            "dns_record_set",
            "global_address",
            "global_forwarding_rule",
            "managed_ssl_certificate",
            "network_endpoint_group",
            "target_http_proxy",
            "target_https_proxy",
            "url_map",
        ]


def _section_model(section: str) -> type:
    """Item model of a ``list[Resource]`` config section."""
    annotation = Config.model_fields[section].annotation
    (item,) = annotation.__args__  # type: ignore[union-attr]
    return item

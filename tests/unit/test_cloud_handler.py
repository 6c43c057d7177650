"""Tests for the local cloud backend and the generic cloud resource handler."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from edge_provisioner.config import apply, drift, plan, refresh, save_state
from edge_provisioner.core import CloudProvider, LocalCloud, ResourceInstance
from edge_provisioner.core.state import State
from edge_provisioner.engine.cloud_handler import CloudResourceHandler
from edge_provisioner.engine.errors import ProviderError
from edge_provisioner.engine.handlers import EngineContext, PlanContext
from edge_provisioner.engine.types import Action, NodeStatus
from edge_provisioner.resources import (
    BackendServiceResource,
    GlobalAddressResource,
    ManagedSslCertificateResource,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from edge_provisioner.config.schema import Config


@pytest.fixture
def cloud(tmp_path: Path) -> LocalCloud:
    return LocalCloud(tmp_path / "cloud", "shop")


@pytest.fixture
def ctx(cloud: LocalCloud) -> EngineContext:
    return EngineContext(provider=CloudProvider.from_client(cloud, project="shop"), stack="shop")


class TestLocalCloud:
    def test_insert_assigns_server_fields(self, cloud: LocalCloud) -> None:
        obj = cloud.insert("backendServices", "api", {"protocol": "HTTPS"})

        assert obj["name"] == "api"
        assert obj["kind"] == "backendServices"
        assert obj["self_link"] == "projects/shop/global/backendServices/api"
        assert obj["id"].isdigit()
        assert cloud.get("backendServices", "api") == obj

    def test_insert_existing_is_a_conflict(self, cloud: LocalCloud) -> None:
        cloud.insert("urlMaps", "web", {})
        with pytest.raises(ProviderError) as exc_info:
            cloud.insert("urlMaps", "web", {})
        assert exc_info.value.status == 409
        assert not exc_info.value.retryable

    def test_missing_objects(self, cloud: LocalCloud) -> None:
        assert cloud.get("urlMaps", "nope") is None
        with pytest.raises(ProviderError) as exc_info:
            cloud.delete("urlMaps", "nope")
        assert exc_info.value.status == 404
        with pytest.raises(ProviderError):
            cloud.patch("urlMaps", "nope", {})

    def test_address_allocation_is_stable(self, tmp_path: Path, cloud: LocalCloud) -> None:
        first = cloud.insert("globalAddresses", "web", {"ipVersion": "IPV4"})["address"]
        other = LocalCloud(tmp_path / "other", "shop")
        assert other.insert("globalAddresses", "web", {})["address"] == first
        assert first.startswith("34.")

        v6 = cloud.insert("globalAddresses", "web6", {"ipVersion": "IPV6"})["address"]
        assert ":" in v6

    def test_patch_keeps_reserved_address(self, cloud: LocalCloud) -> None:
        address = cloud.insert("globalAddresses", "web", {"description": "a"})["address"]
        patched = cloud.patch("globalAddresses", "web", {"description": "b"})
        assert patched["address"] == address
        assert patched["description"] == "b"

    def test_patch_replaces_user_fields(self, cloud: LocalCloud) -> None:
        cloud.insert("backendServices", "api", {"timeoutSec": 30, "portName": "http"})
        patched = cloud.patch("backendServices", "api", {"timeoutSec": 60})
        assert patched["timeoutSec"] == 60
        assert "portName" not in patched

    def test_state_is_shared_through_the_file(self, tmp_path: Path, cloud: LocalCloud) -> None:
        cloud.insert("urlMaps", "web", {})
        assert LocalCloud(tmp_path / "cloud", "shop").list("urlMaps")[0]["name"] == "web"

    def test_returned_objects_are_copies(self, cloud: LocalCloud) -> None:
        obj = cloud.insert("sslCertificates", "web", {"managed": {"domains": ["a.example.com"]}})
        obj["managed"]["domains"].append("b.example.com")
        assert cloud.get("sslCertificates", "web")["managed"]["domains"] == ["a.example.com"]


class TestCloudResourceHandler:
    def test_create_returns_model_attrs_and_outputs(self, ctx: EngineContext) -> None:
        handler = CloudResourceHandler(GlobalAddressResource)
        attrs = handler.create(ctx, GlobalAddressResource(name="web", labels={"team": "edge"}))

        assert attrs["name"] == "web"
        assert attrs["ip_version"] == "IPV4"
        assert attrs["labels"] == {"team": "edge"}
        assert attrs["address"].startswith("34.")
        assert "depends_on" not in attrs
        assert "self_link" in attrs

    def test_nested_api_paths(self, ctx: EngineContext, cloud: LocalCloud) -> None:
        handler = CloudResourceHandler(ManagedSslCertificateResource)
        attrs = handler.create(
            ctx, ManagedSslCertificateResource(name="web", domains=["shop.example.com"])
        )

        assert cloud.get("sslCertificates", "web")["managed"] == {"domains": ["shop.example.com"]}
        assert attrs["domains"] == ["shop.example.com"]
        assert attrs["status"] == "ACTIVE"

    def test_read_update_delete(self, ctx: EngineContext, cloud: LocalCloud) -> None:
        handler = CloudResourceHandler(BackendServiceResource)
        desired = BackendServiceResource(name="api", backends=["neg"])
        attrs = handler.create(ctx, desired)
        prior = ResourceInstance(
            address=desired.address,
            resource_type=desired.resource_type,
            name=desired.name,
            attributes=attrs,
        )

        assert handler.read(ctx, prior) == attrs

        updated = handler.update(ctx, desired.model_copy(update={"timeout_sec": 90}), prior)
        assert updated["timeout_sec"] == 90
        assert cloud.get("backendServices", "api")["timeoutSec"] == 90

        handler.delete(ctx, prior)
        assert handler.read(ctx, prior) is None


_STACK_YAML = """\
provider:
  stack: shop
  data_dir: cloud

locals:
  domain: shop.example.com
  region: europe-west1

endpoint_groups:
  - name: app-neg
    region: ${local.region}
    cloud_run_service: shop-app

backend_services:
  - name: app
    backends: [app-neg]
  - name: assets
    backends: [app-neg]
    enable_cdn: true
    cdn_policy:
      default_ttl: 3600

url_maps:
  - name: web
    default_service: app
    host_rules:
      - hosts: ["${local.domain}"]
        path_matcher: main
    path_matchers:
      - name: main
        default_service: app
        path_rules:
          - paths: ["/static/*"]
            service: assets
  - name: redirect
    https_redirect: true

http_proxies:
  - name: web-http
    url_map: redirect

https_proxies:
  - name: web-https
    url_map: web
    ssl_certificates: [web-cert]

certificates:
  - name: web-cert
    domains: ["${local.domain}"]

addresses:
  - name: web-ip

forwarding_rules:
  - name: web-https
    target: web-https
    ip_address: "${global_address.web-ip.address}"
  - name: web-http
    target: web-http
    port_range: "80"
    ip_address: "${global_address.web-ip.address}"
"""

_DNS_YAML = """
dns_records:
  - name: www
    managed_zone: example-com
    record_name: "${local.domain}."
    rrdatas: ["${global_address.web-ip.address}"]
"""


class TestPlanContext:
    def test_find_filters_by_name_and_type(self) -> None:
        state = State(stack="shop")
        state.resources["target_http_proxy.web"] = ResourceInstance(
            address="target_http_proxy.web", resource_type="target_http_proxy", name="web"
        )
        address = GlobalAddressResource(name="web")
        plan_ctx = PlanContext({address.address: address}, state)

        assert plan_ctx.find("web", "global_address") == [address]
        assert [i.resource_type for i in plan_ctx.find("web")] == [
            "target_http_proxy",
            "global_address",
        ]
        assert plan_ctx.find("api") == []

    def test_declared_resource_shadows_state(self) -> None:
        state = State(stack="shop")
        state.resources["global_address.web"] = ResourceInstance(
            address="global_address.web", resource_type="global_address", name="web"
        )
        declared = GlobalAddressResource(name="web", ip_version="IPV6")

        (found,) = PlanContext({declared.address: declared}, state).find("web")

        assert found is declared


@pytest.mark.integration
class TestLocalStackLifecycle:
    @pytest.fixture
    def config(self, make_config: Callable[..., Config]) -> Config:
        return make_config(_STACK_YAML + _DNS_YAML)

    def test_apply_then_replan_is_noop(self, config: Config, tmp_path: Path) -> None:
        first = plan(config)
        assert first.summary()["create"] == 12

        dns = next(c for c in first.changes if c.address == "dns_record_set.www")
        assert dns.planned is not None
        assert dns.planned["rrdatas"] == ["(known after apply)"]

        result = apply(first, config)
        assert result.ok
        assert result.summary()["create"] == 12

        cloud = LocalCloud(tmp_path / "cloud", "shop")
        ip = cloud.get("globalAddresses", "web-ip")["address"]
        assert cloud.get("rrsets", "www")["rrdatas"] == [ip]
        assert cloud.get("globalForwardingRules", "web-https")["IPAddress"] == ip
        assert cloud.get("networkEndpointGroups", "app-neg")["region"] == "europe-west1"

        again = plan(config)
        assert {c.action for c in again.changes} == {Action.NOOP}

    def test_removing_a_record_plans_one_delete(
        self, config: Config, make_config: Callable[..., Config], tmp_path: Path
    ) -> None:
        apply(plan(config), config)

        smaller = make_config(_STACK_YAML)
        changes = [c for c in plan(smaller).changes if c.action != Action.NOOP]
        assert [(c.address, c.action) for c in changes] == [
            ("dns_record_set.www", Action.DELETE)
        ]

        assert apply(plan(smaller), smaller).ok
        assert LocalCloud(tmp_path / "cloud", "shop").get("rrsets", "www") is None

    def test_destroy_deletes_dependents_first(self, config: Config, tmp_path: Path) -> None:
        apply(plan(config), config)

        destroy_plan = plan(config, destroy=True)
        order = [c.address for c in destroy_plan.changes]
        assert {c.action for c in destroy_plan.changes} == {Action.DELETE}
        assert order.index("global_forwarding_rule.web-https") < order.index(
            "target_https_proxy.web-https"
        )
        assert order.index("backend_service.assets") < order.index(
            "network_endpoint_group.app-neg"
        )
        assert order.index("dns_record_set.www") < order.index("global_address.web-ip")

        assert apply(destroy_plan, config).ok
        cloud = LocalCloud(tmp_path / "cloud", "shop")
        for kind in ("networkEndpointGroups", "backendServices", "urlMaps", "rrsets"):
            assert cloud.list(kind) == []

    def test_existing_object_fails_only_its_branch(self, config: Config, tmp_path: Path) -> None:
        LocalCloud(tmp_path / "cloud", "shop").insert("globalAddresses", "web-ip", {})

        result = apply(plan(config), config)
        statuses = result.statuses()

        assert not result.ok
        assert statuses["global_address.web-ip"] == NodeStatus.FAILED
        assert statuses["global_forwarding_rule.web-https"] == NodeStatus.BLOCKED
        assert statuses["global_forwarding_rule.web-http"] == NodeStatus.BLOCKED
        assert statuses["dns_record_set.www"] == NodeStatus.BLOCKED
        assert statuses["target_https_proxy.web-https"] == NodeStatus.APPLIED
        assert statuses["backend_service.assets"] == NodeStatus.APPLIED

        [failed] = result.failed
        assert "already exists" in (failed.error or "")
        assert failed.attempts == 1

    def test_drift_and_refresh(self, config: Config, tmp_path: Path) -> None:
        apply(plan(config), config)
        cloud = LocalCloud(tmp_path / "cloud", "shop")
        raw = cloud.get("backendServices", "app")
        assert raw is not None
        raw["timeoutSec"] = 60
        cloud.patch("backendServices", "app", raw)
        cloud.delete("rrsets", "www")

        changes = drift(config)
        by_addr = {c.address: c for c in changes}
        assert by_addr["backend_service.app"].action == Action.UPDATE
        assert by_addr["backend_service.app"].diff == {"timeout_sec": {"from": 30, "to": 60}}
        assert by_addr["dns_record_set.www"].action == Action.DELETE

        # Drift detection alone leaves state untouched.
        repaired = plan(config, refresh=True)
        by_addr_plan = {c.address: c.action for c in repaired.changes}
        assert by_addr_plan["backend_service.app"] == Action.UPDATE
        assert by_addr_plan["dns_record_set.www"] == Action.CREATE

        assert apply(repaired, config).ok
        assert cloud.get("backendServices", "app")["timeoutSec"] == 30
        assert {c.action for c in plan(config).changes} == {Action.NOOP}

    def test_save_refreshed_state(self, config: Config, tmp_path: Path) -> None:
        apply(plan(config), config)
        LocalCloud(tmp_path / "cloud", "shop").delete("rrsets", "www")

        changes, new_state = refresh(config)
        assert [c.address for c in changes] == ["dns_record_set.www"]

        save_state(config, new_state)
        follow_up = plan(config)
        creates = [c.address for c in follow_up.changes if c.action == Action.CREATE]
        assert creates == ["dns_record_set.www"]

from __future__ import annotations

import pytest

from edge_provisioner.config.registry import default_registry
from edge_provisioner.engine.builder import Edge, build_graph
from edge_provisioner.engine.errors import (
    CycleError,
    DuplicateAddressError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
)
from edge_provisioner.engine.registry import ResourceTypeRegistry
from edge_provisioner.resources import (
    BackendServiceResource,
    DnsRecordSetResource,
    GlobalAddressResource,
    GlobalForwardingRuleResource,
    HostRule,
    ManagedSslCertificateResource,
    NetworkEndpointGroupResource,
    PathMatcher,
    PathRule,
    Resource,
    TargetHttpProxyResource,
    TargetHttpsProxyResource,
    UrlMapResource,
)


def _stack() -> list[Resource]:
    return [
        DnsRecordSetResource(
            name="www",
            managed_zone="example-zone",
            record_name="www.example.com.",
            rrdatas=["${global_address.web_ip.address}"],
        ),
        GlobalForwardingRuleResource(
            name="web_https",
            target="web_proxy",
            ip_address="${global_address.web_ip.address}",
        ),
        TargetHttpsProxyResource(
            name="web_proxy", url_map="web_map", ssl_certificates=["web_cert"]
        ),
        UrlMapResource(
            name="web_map",
            default_service="app",
            host_rules=[HostRule(hosts=["www.example.com"], path_matcher="main")],
            path_matchers=[
                PathMatcher(
                    name="main",
                    default_service="app",
                    path_rules=[PathRule(paths=["/static/*"], service="assets")],
                )
            ],
        ),
        BackendServiceResource(name="app", backends=["app_neg"]),
        BackendServiceResource(name="assets", backends=["app_neg"], enable_cdn=True),
        NetworkEndpointGroupResource(
            name="app_neg", region="europe-west1", cloud_run_service="app"
        ),
        ManagedSslCertificateResource(name="web_cert", domains=["www.example.com"]),
        GlobalAddressResource(name="web_ip"),
    ]


def test_full_stack_edges_and_order() -> None:
    graph = build_graph(_stack(), default_registry())

    assert graph.dependencies("url_map.web_map") == [
        "backend_service.app",
        "backend_service.assets",
    ]
    assert graph.dependencies("global_forwarding_rule.web_https") == [
        "target_https_proxy.web_proxy",
        "global_address.web_ip",
    ]
    assert Edge("dns_record_set.www", "global_address.web_ip") in graph.edges

    position = {addr: i for i, addr in enumerate(graph.order)}
    for edge in graph.edges:
        assert position[edge.target] < position[edge.source]
    assert graph.order[0] == "network_endpoint_group.app_neg"


def test_dependents() -> None:
    graph = build_graph(_stack())
    assert graph.dependents("global_address.web_ip") == {
        "dns_record_set.www",
        "global_forwarding_rule.web_https",
    }
    assert "global_forwarding_rule.web_https" in graph.transitive_dependents(
        "network_endpoint_group.app_neg"
    )


def test_to_dot() -> None:
    graph = build_graph(_stack())
    dot = graph.to_dot()
    assert dot.startswith("digraph edge {")
    assert '"url_map.web_map" -> "backend_service.app";' in dot


def test_same_name_different_type_is_not_a_match() -> None:
    resources = [
        GlobalAddressResource(name="app"),
        BackendServiceResource(name="api", backends=["app"]),
    ]
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        build_graph(resources)
    assert exc_info.value.references == [
        ("backend_service.api", "network_endpoint_group.app")
    ]


def test_every_dangling_reference_is_reported() -> None:
    resources = [
        BackendServiceResource(name="api", backends=["missing_neg"]),
        DnsRecordSetResource(
            name="www",
            managed_zone="z",
            record_name="www.example.com.",
            rrdatas=["${global_address.nope.address}"],
            depends_on=["url_map.ghost"],
        ),
    ]
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        build_graph(resources)

    assert exc_info.value.references == [
        ("backend_service.api", "network_endpoint_group.missing_neg"),
        ("dns_record_set.www", "url_map.ghost"),
        ("dns_record_set.www", "${global_address.nope.address}"),
    ]
    assert "backend_service.api -> network_endpoint_group.missing_neg" in str(exc_info.value)


def test_expression_to_unexposed_attribute_is_unresolved() -> None:
    resources = [
        GlobalAddressResource(name="web_ip"),
        DnsRecordSetResource(
            name="www",
            managed_zone="z",
            record_name="www.example.com.",
            rrdatas=["${global_address.web_ip.status}"],
        ),
    ]
    with pytest.raises(UnresolvedReferenceError):
        build_graph(resources)

def test_depends_on_is_not_an_expression_target() -> None:
    resources = [
        GlobalAddressResource(name="web_ip"),
        DnsRecordSetResource(
            name="www",
            managed_zone="z",
            record_name="www.example.com.",
            rrdatas=["${global_address.web_ip.depends_on}"],
        ),
    ]
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        build_graph(resources)

    assert exc_info.value.references == [
        ("dns_record_set.www", "${global_address.web_ip.depends_on}")
    ]
    assert not GlobalAddressResource.exposes("depends_on")
    assert GlobalAddressResource.exposes("address")



def test_forwarding_rule_accepts_either_proxy_type() -> None:
    resources = [
        UrlMapResource(name="redirect", https_redirect=True),
        TargetHttpProxyResource(name="web_http", url_map="redirect"),
        GlobalForwardingRuleResource(name="web_http", target="web_http", port_range="80"),
    ]
    graph = build_graph(resources)
    assert graph.dependencies("global_forwarding_rule.web_http") == [
        "target_http_proxy.web_http"
    ]

def test_proxy_name_shared_by_both_proxy_types_is_ambiguous() -> None:
    resources = [
        UrlMapResource(name="web", default_service="app"),
        BackendServiceResource(name="app", backends=["app_neg"]),
        NetworkEndpointGroupResource(
            name="app_neg", region="europe-west1", cloud_run_service="app"
        ),
        ManagedSslCertificateResource(name="cert", domains=["www.example.com"]),
        TargetHttpProxyResource(name="web", url_map="web"),
        TargetHttpsProxyResource(name="web", url_map="web", ssl_certificates=["cert"]),
        GlobalForwardingRuleResource(name="fr", target="web"),
    ]
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        build_graph(resources)

    assert exc_info.value.references == [
        (
            "global_forwarding_rule.fr",
            "target_http_proxy|target_https_proxy.web "
            "(ambiguous: target_http_proxy.web, target_https_proxy.web)",
        )
    ]



def test_depends_on_cycle() -> None:
    resources = [
        GlobalAddressResource(name="a", depends_on=["global_address.b"]),
        GlobalAddressResource(name="b", depends_on=["global_address.a"]),
    ]
    with pytest.raises(CycleError) as exc_info:
        build_graph(resources)
    assert exc_info.value.addresses == ["global_address.a", "global_address.b"]


def test_duplicate_address() -> None:
    with pytest.raises(DuplicateAddressError):
        build_graph([GlobalAddressResource(name="a"), GlobalAddressResource(name="a")])


def test_unregistered_type() -> None:
    with pytest.raises(UnknownResourceTypeError):
        build_graph([GlobalAddressResource(name="a")], ResourceTypeRegistry())

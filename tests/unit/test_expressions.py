from __future__ import annotations

from typing import Any

import pytest

from edge_provisioner.resources.expressions import (
    UNKNOWN,
    OutputRef,
    contains_unknown,
    find_expressions,
    resolve_expressions,
)


def _lookup(values: dict[str, Any]) -> Any:
    def _inner(ref: OutputRef) -> Any:
        return values[f"{ref.address}.{ref.attribute}"]

    return _inner


def test_find_expressions_recurses() -> None:
    value = {
        "rrdatas": ["${global_address.web.address}"],
        "nested": {"host": "api.${dns_record_set.api.record_name}"},
        "ttl": 300,
    }
    refs = find_expressions(value)
    assert refs == [
        OutputRef("global_address", "web", "address"),
        OutputRef("dns_record_set", "api", "record_name"),
    ]
    assert refs[0].address == "global_address.web"
    assert str(refs[0]) == "${global_address.web.address}"


def test_plain_strings_have_no_expressions() -> None:
    assert find_expressions("$HOME and {braces}") == []
    assert find_expressions("${local.domain}") == []


def test_full_match_keeps_value_type() -> None:
    lookup = _lookup({"url_map.web.host_rules": [{"hosts": ["a"]}]})
    assert resolve_expressions("${url_map.web.host_rules}", lookup) == [{"hosts": ["a"]}]


def test_full_match_scalar_becomes_text() -> None:
    lookup = _lookup({"backend_service.api.timeout_sec": 30})
    assert resolve_expressions("${backend_service.api.timeout_sec}", lookup) == "30"


def test_embedded_expression_is_interpolated() -> None:
    lookup = _lookup({"global_address.web.address": "34.1.2.3"})
    assert resolve_expressions("ip=${global_address.web.address}!", lookup) == "ip=34.1.2.3!"


def test_unknown_poisons_whole_string() -> None:
    lookup = _lookup({"global_address.web.address": UNKNOWN})
    assert resolve_expressions("ip=${global_address.web.address}", lookup) == UNKNOWN
    assert contains_unknown({"rrdatas": [UNKNOWN]})
    assert not contains_unknown({"rrdatas": ["34.1.2.3"]})


def test_resolution_recurses_into_containers() -> None:
    lookup = _lookup({"global_address.web.address": "34.1.2.3"})
    value = {"rrdatas": ["${global_address.web.address}"], "ttl": 60}
    assert resolve_expressions(value, lookup) == {"rrdatas": ["34.1.2.3"], "ttl": 60}


def test_lookup_errors_propagate() -> None:
    def _missing(ref: OutputRef) -> Any:
        raise LookupError(str(ref))

    with pytest.raises(LookupError):
        resolve_expressions("${global_address.web.address}", _missing)

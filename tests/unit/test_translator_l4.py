# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Tests for TCPRoute and UDPRoute translation in translator.py."""

import pytest

from models import PortDef, PortMode
from tests.unit.helpers import make_l4_route
from translator import translate_l4_routes


@pytest.mark.parametrize(
    "rules, expected_expressions",
    [
        # single rule and single backendref
        (
            [[("service1", 80)]],
            {"tcproute.default.tcproute-1.0": "net.dst.port == 80"},
        ),
        # single rule and multiple backendrefs
        (
            [[("service1", 80), ("service2", 443)]],
            {"tcproute.default.tcproute-1.0": "(net.dst.port == 80) || (net.dst.port == 443)"},
        ),
        # multiple rules
        (
            [[("service1", 80), ("service2", 443)], [("service3", 8080), ("service4", 8443)]],
            {
                "tcproute.default.tcproute-1.0": "(net.dst.port == 80) || (net.dst.port == 443)",
                "tcproute.default.tcproute-1.1": "(net.dst.port == 8080) || (net.dst.port == 8443)",
            },
        ),
    ],
)
def test_tcp_routes_using_expression_routes(expression_config, rules, expected_expressions):
    """Test that every TCPRoute rule becomes a service with one expression route."""
    route = make_l4_route("tcproute-1", rules)

    services = translate_l4_routes([route], "tcp", expression_config)

    assert list(services) == list(expected_expressions)
    for (service_name, expression), rule in zip(expected_expressions.items(), rules):
        service = services[service_name]
        assert service.protocol == "tcp"
        assert service.host == service_name
        assert service.port == rule[0][1]
        assert [(b.name, b.namespace, b.port) for b in service.backends] == [
            (name, "default", PortDef(mode=PortMode.ByNumber, number=port)) for name, port in rule
        ]
        assert len(service.routes) == 1
        gateway_route = service.routes[0]
        assert gateway_route.name == f"{service_name}.0"
        assert gateway_route.expression == expression
        assert gateway_route.protocols == ["tcp"]
        assert gateway_route.preserve_host is True
        assert gateway_route.expression_routes is True
        assert gateway_route.destinations == []


def test_tcp_routes_using_traditional_routes(config):
    """Test that without expression routes the backend ports become destinations."""
    route = make_l4_route("tcproute-1", [[("service1", 80), ("service2", 443)]])

    services = translate_l4_routes([route], "tcp", config)

    gateway_route = services["tcproute.default.tcproute-1.0"].routes[0]
    assert gateway_route.expression is None
    assert [d.port for d in gateway_route.destinations] == [80, 443]
    assert gateway_route.tags == [
        "k8s-name:tcproute-1",
        "k8s-namespace:default",
        "k8s-kind:TCPRoute",
        "k8s-group:gateway.networking.k8s.io",
        "k8s-version:v1alpha2",
    ]


def test_udp_routes(expression_config):
    """Test that UDPRoutes are named after their kind and use the udp protocol."""
    route = make_l4_route("dns", [[("coredns", 53)]], namespace="kube-system", kind="UDPRoute")

    services = translate_l4_routes([route], "udp", expression_config)

    service = services["udproute.kube-system.dns.0"]
    assert service.protocol == "udp"
    assert service.routes[0].name == "udproute.kube-system.dns.0.0"
    assert service.routes[0].protocols == ["udp"]
    assert service.routes[0].expression == "net.dst.port == 53"


def test_rules_without_backends_or_ports_are_skipped(expression_config):
    """Test that unusable rules are skipped while their siblings are translated."""
    route = make_l4_route("tcproute-1", [[], [("service1", None)], [("service2", 9000)]])

    services = translate_l4_routes([route], "tcp", expression_config)

    assert list(services) == ["tcproute.default.tcproute-1.2"]


def test_backend_namespace_overrides_route_namespace(config):
    """Test that a backendRef namespace is kept on the service backend."""
    route = make_l4_route("tcproute-1", [[("service1", 80)]])
    route.spec.rules[0].backendRefs[0].namespace = "other"

    services = translate_l4_routes([route], "tcp", config)

    assert services["tcproute.default.tcproute-1.0"].backends[0].namespace == "other"

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Builders for the resources used across the unit tests."""
from typing import Dict, List, Optional, Tuple, Union

from lightkube.models.meta_v1 import ObjectMeta
from lightkube.models.networking_v1 import (
    HTTPIngressPath,
    HTTPIngressRuleValue,
    IngressBackend,
    IngressRule,
    IngressServiceBackend,
    IngressSpec,
    ServiceBackendPort,
)
from lightkube.resources.networking_v1 import Ingress

from models import L4BackendRef, L4RouteRule, L4RouteSpec, Metadata, TCPRouteResource, UDPRouteResource


def make_path(
    path: Optional[str],
    path_type: Optional[str],
    service: str,
    port: Union[int, str, None] = 80,
) -> HTTPIngressPath:
    """Create an ingress path pointing at a service port given by number or name."""
    if isinstance(port, str):
        backend_port = ServiceBackendPort(name=port)
    elif port is None:
        backend_port = ServiceBackendPort()
    else:
        backend_port = ServiceBackendPort(number=port)
    return HTTPIngressPath(
        path=path,
        pathType=path_type,
        backend=IngressBackend(service=IngressServiceBackend(name=service, port=backend_port)),
    )


def make_rule(host: Optional[str], paths: List[HTTPIngressPath]) -> IngressRule:
    """Create an ingress rule for a host."""
    return IngressRule(host=host, http=HTTPIngressRuleValue(paths=paths))


def make_ingress(
    name: str,
    rules: List[IngressRule],
    namespace: str = "default",
    uid: Optional[str] = None,
    annotations: Optional[Dict[str, str]] = None,
) -> Ingress:
    """Create an ingress resource."""
    return Ingress(
        metadata=ObjectMeta(name=name, namespace=namespace, uid=uid, annotations=annotations),
        spec=IngressSpec(rules=rules),
    )


def make_l4_route(
    name: str,
    rules: List[List[Tuple[str, Optional[int]]]],
    namespace: str = "default",
    kind: str = "TCPRoute",
    annotations: Optional[Dict[str, str]] = None,
) -> Union[TCPRouteResource, UDPRouteResource]:
    """Create a TCPRoute or UDPRoute with one rule per list of (backend, port) pairs."""
    resource_cls = TCPRouteResource if kind == "TCPRoute" else UDPRouteResource
    return resource_cls(
        metadata=Metadata(name=name, namespace=namespace, annotations=annotations),
        spec=L4RouteSpec(
            rules=[
                L4RouteRule(backendRefs=[L4BackendRef(name=backend, port=port) for backend, port in rule])
                for rule in rules
            ]
        ),
    )

#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""This module defines Pydantic schemas for the L4 route inputs and the gateway configuration outputs."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Global metadata schema
class Metadata(BaseModel):
    """Global metadata schema for Kubernetes resources."""

    name: str
    namespace: str
    uid: Optional[str] = None
    annotations: Optional[Dict[str, str]] = None


# L4 route schema (TCPRoute / UDPRoute)
class L4BackendRef(BaseModel):
    """L4BackendRef specifies the backend service that a TCP or UDP rule forwards to."""

    name: str
    namespace: Optional[str] = None
    port: Optional[int] = None


class L4RouteRule(BaseModel):
    """L4RouteRule defines one rule of a TCPRoute or UDPRoute."""

    backendRefs: List[L4BackendRef] = []  # noqa: N815


class L4RouteSpec(BaseModel):
    """L4RouteSpec defines the specification of a TCPRoute or UDPRoute."""

    rules: List[L4RouteRule] = []


class TCPRouteResource(BaseModel):
    """TCPRouteResource defines the structure of a TCPRoute Kubernetes resource."""

    apiVersion: str = "gateway.networking.k8s.io/v1alpha2"  # noqa: N815
    kind: str = "TCPRoute"
    metadata: Metadata
    spec: L4RouteSpec = L4RouteSpec()


class UDPRouteResource(BaseModel):
    """UDPRouteResource defines the structure of a UDPRoute Kubernetes resource."""

    apiVersion: str = "gateway.networking.k8s.io/v1alpha2"  # noqa: N815
    kind: str = "UDPRoute"
    metadata: Metadata
    spec: L4RouteSpec = L4RouteSpec()


# Gateway configuration schema
class PortMode(str, Enum):
    """PortMode defines how a backend port was referenced."""

    Implicit = "Implicit"
    ByNumber = "ByNumber"
    ByName = "ByName"


class PortDef(BaseModel):
    """PortDef is a backend port reference by number, by name, or left implicit."""

    model_config = ConfigDict(frozen=True)

    mode: PortMode = PortMode.Implicit
    number: Optional[int] = None
    name: Optional[str] = None

    def canonical_string(self) -> str:
        """Return the textual form of the port used in keys and derived names."""
        if self.mode is PortMode.ByNumber:
            return str(self.number)
        if self.mode is PortMode.ByName:
            return self.name or ""
        return "implicit"


class ObjectInfo(BaseModel):
    """ObjectInfo identifies the Kubernetes resource a gateway object was derived from."""

    group: str = ""
    version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""
    annotations: Dict[str, str] = {}

    def identity(self) -> str:
        """Return a human readable identity such as ``Ingress default/foo``."""
        return f"{self.kind} {self.namespace}/{self.name}"


class ServiceBackend(BaseModel):
    """ServiceBackend is one Kubernetes service a gateway service load balances across."""

    name: str
    namespace: str
    port: PortDef


class Plugin(BaseModel):
    """Plugin is a gateway plugin attached to a service."""

    name: str
    config: Dict[str, Any] = {}


class Destination(BaseModel):
    """Destination is a port matched by a legacy L4 route."""

    port: int


class GatewayRoute(BaseModel):
    """GatewayRoute is one routable unit of a gateway service."""

    name: str
    hosts: List[str] = []
    paths: List[str] = []
    protocols: List[str] = []
    destinations: List[Destination] = []
    expression: Optional[str] = None
    strip_path: Optional[bool] = None
    preserve_host: Optional[bool] = None
    regex_priority: Optional[int] = None
    request_buffering: Optional[bool] = None
    response_buffering: Optional[bool] = None
    tags: List[str] = []
    source: ObjectInfo = Field(default_factory=ObjectInfo)
    expression_routes: bool = False


class GatewayService(BaseModel):
    """GatewayService is the gateway's upstream definition together with its routes and plugins."""

    name: str
    host: str
    port: int
    protocol: str
    path: Optional[str] = None
    connect_timeout: Optional[int] = None
    read_timeout: Optional[int] = None
    write_timeout: Optional[int] = None
    retries: Optional[int] = None
    namespace: str = ""
    backends: List[ServiceBackend] = []
    routes: List[GatewayRoute] = []
    plugins: List[Plugin] = []
    parent: ObjectInfo = Field(default_factory=ObjectInfo)

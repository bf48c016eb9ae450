#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Translation of ingress and L4 route resources into gateway services and routes.

The entry point is ``Translator.translate``, which takes a consistent snapshot of
resources and returns the full gateway configuration graph plus the failures
of the resources that could not be translated. A pass holds no state beyond
its own return value, so independent passes never interfere.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from lightkube.resources.networking_v1 import Ingress

from config import FeatureFlags, TranslatorConfig
from expressions import compile_http_expression, compile_l4_expression
from failures import ResourceFailure, ResourceFailuresCollector
from models import (
    Destination,
    GatewayRoute,
    GatewayService,
    ObjectInfo,
    Plugin,
    PortDef,
    PortMode,
    ServiceBackend,
)
from utils import (
    DEFAULT_PATH_TYPE,
    RegexPrefixPolicy,
    TranslationError,
    compile_paths,
    flatten_multiple_slashes,
    generate_tags_for_object,
    object_info_for,
    port_def_from_service_backend_port,
    regex_prefix_policy_for,
    rewrite_plugin_for,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================
DEFAULT_HTTP_PORT = 80
DEFAULT_RETRIES = 5
# Milliseconds the data plane waits on connections to a Kubernetes service.
DEFAULT_SERVICE_TIMEOUT = 60_000

HTTP_PROTOCOLS = ["http", "https"]
TCP_PROTOCOL = "tcp"
UDP_PROTOCOL = "udp"


# ============================================================================
# Ingress translation index
# ============================================================================
class IngressPath(NamedTuple):
    """A normalized ingress path accumulated for one route."""

    path: str
    path_type: str


@dataclass
class IngressTranslationMeta:
    """Everything needed to build one route, keyed by ingress, host, backend and port."""

    parent: ObjectInfo
    host: str
    tags: List[str]
    service_name: str
    service_port: PortDef
    regex_policy: RegexPrefixPolicy
    paths: List[IngressPath] = field(default_factory=list)

    def generate_service_name(self) -> str:
        """Name the gateway service after the backend alone, so all ingresses sharing it collapse."""
        return f"{self.parent.namespace}.{self.service_name}.{self.service_port.canonical_string()}"

    def generate_route_name(self) -> str:
        """Name the route after its ingress, backend, host and port.

        The gateway forbids ``*`` in names, so wildcard hosts use ``_`` instead.
        """
        host = self.host.replace("*", "_")
        return (
            f"{self.parent.namespace}.{self.parent.name}.{self.service_name}."
            f"{host}.{self.service_port.canonical_string()}"
        )

    def translate_into_service(self, name: str) -> GatewayService:
        """Build the gateway service for this record's backend."""
        namespace = self.parent.namespace
        return GatewayService(
            name=name,
            host=f"{self.service_name}.{namespace}.{self.service_port.canonical_string()}.svc",
            port=DEFAULT_HTTP_PORT,
            protocol="http",
            path="/",
            connect_timeout=DEFAULT_SERVICE_TIMEOUT,
            read_timeout=DEFAULT_SERVICE_TIMEOUT,
            write_timeout=DEFAULT_SERVICE_TIMEOUT,
            retries=DEFAULT_RETRIES,
            namespace=namespace,
            backends=[ServiceBackend(name=self.service_name, namespace=namespace, port=self.service_port)],
            parent=self.parent,
        )

    def _base_route(self, expression_routes: bool) -> GatewayRoute:
        return GatewayRoute(
            name=self.generate_route_name(),
            protocols=list(HTTP_PROTOCOLS),
            strip_path=False,
            preserve_host=True,
            regex_priority=0,
            request_buffering=True,
            response_buffering=True,
            tags=list(self.tags),
            source=self.parent,
            expression_routes=expression_routes,
        )

    def translate_into_route(self) -> GatewayRoute:
        """Build a traditional route matching on hosts and path patterns."""
        route = self._base_route(expression_routes=False)
        if self.host:
            route.hosts.append(self.host)
        for ingress_path in self.paths:
            for pattern in compile_paths(ingress_path.path, ingress_path.path_type):
                route.paths.append(self.regex_policy.apply(pattern))
        return route

    def translate_into_expression_route(self) -> Optional[GatewayRoute]:
        """Build an expression based route, or None when nothing would be matched."""
        expression = compile_http_expression(
            self.host, [(p.path, p.path_type) for p in self.paths], self.regex_policy.prefix
        )
        if not expression:
            logger.debug(f"Skipping route {self.generate_route_name()}: no host and no supported path")
            return None
        route = self._base_route(expression_routes=True)
        route.expression = expression
        return route


class IngressTranslationIndex:
    """A de-duplicating index of ingress rules.

    Every (ingress namespace, ingress name, host, backend service, backend port)
    combination maps to one IngressTranslationMeta, which becomes one route.
    Paths of all rules sharing a combination accumulate on the same record, so
    the index compiles the minimal set of routes for the given ingresses. The
    index is single use: ``translate`` may be called once.
    """

    def __init__(self, config: TranslatorConfig):
        self.config = config
        self.feature_flags: FeatureFlags = config.feature_flags
        self._cache: Dict[str, IngressTranslationMeta] = {}
        self._translated = False

    def add(self, ingress: Ingress, regex_policy: RegexPrefixPolicy) -> None:
        """Merge every rule and path of an ingress into the index."""
        info = object_info_for(ingress)
        tags = generate_tags_for_object(info, self.config)
        rules = (ingress.spec.rules if ingress.spec else None) or []

        for rule in rules:
            if rule.http is None or not rule.http.paths:
                continue

            host = rule.host or ""
            for http_path in rule.http.paths:
                backend_service = http_path.backend.service if http_path.backend else None
                if backend_service is None or not backend_service.name:
                    logger.debug(
                        f"Skipping path {http_path.path!r} of {info.identity()}: no backend service"
                    )
                    continue

                path = flatten_multiple_slashes(http_path.path or "") or "/"
                path_type = http_path.pathType or DEFAULT_PATH_TYPE.value
                port = port_def_from_service_backend_port(backend_service.port)

                cache_key = f"{info.namespace}.{info.name}.{host}.{backend_service.name}.{port.canonical_string()}"
                meta = self._cache.get(cache_key)
                if meta is None:
                    meta = IngressTranslationMeta(
                        parent=info,
                        host=host,
                        tags=tags,
                        service_name=backend_service.name,
                        service_port=port,
                        regex_policy=regex_policy,
                    )
                    self._cache[cache_key] = meta

                meta.parent = info
                meta.paths.append(IngressPath(path=path, path_type=path_type))

    def translate(self) -> Dict[str, GatewayService]:
        """Turn the index into gateway services keyed by name, one route per record."""
        if self._translated:
            raise RuntimeError("ingress translation index has already been translated")
        self._translated = True

        services: Dict[str, GatewayService] = {}
        for meta in self._cache.values():
            if self.feature_flags.expression_routes:
                route = meta.translate_into_expression_route()
            else:
                route = meta.translate_into_route()
            if route is None:
                continue

            service_name = meta.generate_service_name()
            service = services.get(service_name)
            if service is None:
                service = meta.translate_into_service(service_name)
                services[service_name] = service
            service.routes.append(route)

        return services


def translate_ingresses(
    ingresses: Iterable[Ingress],
    config: TranslatorConfig,
    translated_objects: Optional[List[ObjectInfo]] = None,
) -> Dict[str, GatewayService]:
    """Translate ingresses into gateway services with their routes.

    Args:
        ingresses: Ingress resources, already validated by Kubernetes
        config: Translator config
        translated_objects: If given, every ingress handled is appended to it

    Returns:
        Dict mapping gateway service name to gateway service
    """
    index = IngressTranslationIndex(config)
    for ingress in ingresses:
        index.add(ingress, regex_prefix_policy_for(ingress, config))
        if translated_objects is not None:
            translated_objects.append(object_info_for(ingress))
    return index.translate()


# ============================================================================
# L4 route translation
# ============================================================================
def translate_l4_routes(
    routes: Iterable[Any],
    protocol: str,
    config: TranslatorConfig,
    translated_objects: Optional[List[ObjectInfo]] = None,
) -> Dict[str, GatewayService]:
    """Translate TCPRoute or UDPRoute resources into gateway services.

    Every rule becomes its own service holding all of the rule's backends, with
    a single route matching the backends' ports.

    Args:
        routes: TCPRouteResource or UDPRouteResource objects
        protocol: Gateway protocol of the routes, "tcp" or "udp"
        config: Translator config
        translated_objects: If given, every route resource handled is appended to it

    Returns:
        Dict mapping gateway service name to gateway service
    """
    services: Dict[str, GatewayService] = {}
    for route in routes:
        info = object_info_for(route)
        tags = generate_tags_for_object(info, config)

        for rule_index, rule in enumerate(route.spec.rules):
            if not rule.backendRefs:
                logger.warning(f"Skipping rule {rule_index} of {info.identity()}: no backendRefs")
                continue
            ports = [backend.port for backend in rule.backendRefs]
            if any(port is None for port in ports):
                logger.warning(f"Skipping rule {rule_index} of {info.identity()}: backendRef without port")
                continue

            service_name = f"{info.kind.lower()}.{info.namespace}.{info.name}.{rule_index}"
            gateway_route = GatewayRoute(
                name=f"{service_name}.0",
                protocols=[protocol],
                preserve_host=True,
                tags=list(tags),
                source=info,
                expression_routes=config.feature_flags.expression_routes,
            )
            if config.feature_flags.expression_routes:
                gateway_route.expression = compile_l4_expression(ports)
            else:
                gateway_route.destinations = [Destination(port=port) for port in ports]

            services[service_name] = GatewayService(
                name=service_name,
                host=service_name,
                port=ports[0],
                protocol=protocol,
                namespace=info.namespace,
                backends=[
                    ServiceBackend(
                        name=backend.name,
                        namespace=backend.namespace or info.namespace,
                        port=PortDef(mode=PortMode.ByNumber, number=backend.port),
                    )
                    for backend in rule.backendRefs
                ],
                routes=[gateway_route],
                parent=info,
            )

        if translated_objects is not None:
            translated_objects.append(info)

    return services


# ============================================================================
# Driver
# ============================================================================
@dataclass
class TranslationResult:
    """Outcome of one translation pass."""

    services: Dict[str, GatewayService]
    failures: List[ResourceFailure]
    translated_objects: List[ObjectInfo]


def _sort_key(resource: Any):
    return (resource.metadata.namespace or "", resource.metadata.name or "")


def _attach_rewrite_plugin(service: GatewayService, rewrite_plugins: Dict[Tuple[str, str], Plugin]) -> None:
    """Attach the rewrite plugin requested by the ingresses routing to the service.

    A service holds at most one rewrite; the first route whose ingress asks for
    one wins, in route order.
    """
    for route in service.routes:
        plugin = rewrite_plugins.get((route.source.namespace, route.source.name))
        if plugin is None:
            continue
        if not service.plugins:
            service.plugins.append(plugin)
        elif plugin != service.plugins[0]:
            logger.warning(
                f"Ignoring rewrite of {route.source.identity()} on service {service.name}: "
                f"conflicts with the rewrite already attached"
            )


class Translator:
    """Runs translation passes over snapshots of resources."""

    def __init__(self, config: TranslatorConfig, failures_collector: Optional[ResourceFailuresCollector] = None):
        self.config = config
        self.failures_collector = failures_collector or ResourceFailuresCollector()

    def translate(
        self,
        ingresses: Iterable[Ingress] = (),
        tcp_routes: Iterable[Any] = (),
        udp_routes: Iterable[Any] = (),
    ) -> TranslationResult:
        """Translate a snapshot of resources into the gateway configuration graph.

        A resource that cannot be translated is recorded as a failure and left
        out; every other resource is still translated.
        """
        translated_objects: List[ObjectInfo] = []

        valid_ingresses: List[Ingress] = []
        rewrite_plugins: Dict[Tuple[str, str], Plugin] = {}
        for ingress in sorted(ingresses, key=_sort_key):
            info = object_info_for(ingress)
            try:
                plugin = rewrite_plugin_for(info, self.config.feature_flags.rewrite_uris, self.config)
            except TranslationError as e:
                self.failures_collector.push_resource_failure(str(e), info)
                continue
            valid_ingresses.append(ingress)
            if plugin is not None:
                rewrite_plugins[(info.namespace, info.name)] = plugin

        services = translate_ingresses(valid_ingresses, self.config, translated_objects)
        for service in services.values():
            _attach_rewrite_plugin(service, rewrite_plugins)

        services.update(
            translate_l4_routes(sorted(tcp_routes, key=_sort_key), TCP_PROTOCOL, self.config, translated_objects)
        )
        services.update(
            translate_l4_routes(sorted(udp_routes, key=_sort_key), UDP_PROTOCOL, self.config, translated_objects)
        )

        failures = self.failures_collector.pop_resource_failures()
        logger.info(
            f"Translated {len(translated_objects)} resources into {len(services)} services "
            f"({len(failures)} failures)"
        )
        return TranslationResult(services=services, failures=failures, translated_objects=translated_objects)

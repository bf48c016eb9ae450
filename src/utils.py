#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Utility functions for the ingress translator.

This module contains the path pattern compiler, the regex prefix policy, the
rewrite URI template compiler and the helpers used to describe and tag source
resources. Functions here hold no state and perform no I/O.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from config import TranslatorConfig
from models import ObjectInfo, Plugin, PortDef, PortMode

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================
# Marker the gateway uses to tell regex paths apart from plain prefixes.
KONG_PATH_REGEX_PREFIX = "~"

REGEX_PREFIX_ANNOTATION = "regex-prefix"
REWRITE_ANNOTATION = "rewrite"
TAGS_ANNOTATION = "tags"

REWRITE_PLUGIN_NAME = "request-transformer"

K8S_NAME_TAG_PREFIX = "k8s-name:"
K8S_NAMESPACE_TAG_PREFIX = "k8s-namespace:"
K8S_KIND_TAG_PREFIX = "k8s-kind:"
K8S_GROUP_TAG_PREFIX = "k8s-group:"
K8S_VERSION_TAG_PREFIX = "k8s-version:"
K8S_UID_TAG_PREFIX = "k8s-uid:"

# Paths matching this were never treated as regexes by gateways older than 3.0.
LEGACY_REGEX_PATH_EXPRESSION = re.compile(r"^[a-zA-Z0-9.\-_~/%]*$")


class PathType(str, Enum):
    """PathType is the path matching mode of an ingress path."""

    Prefix = "Prefix"
    Exact = "Exact"
    ImplementationSpecific = "ImplementationSpecific"


DEFAULT_PATH_TYPE = PathType.ImplementationSpecific


# ============================================================================
# Exception Classes
# ============================================================================
class TranslationError(RuntimeError):
    """Raised when a single resource cannot be translated."""


class MalformedTemplateError(TranslationError):
    """Raised when a rewrite URI template cannot be parsed."""


class FeatureDisabledError(TranslationError):
    """Raised when a resource requests a capability that is turned off."""


# ============================================================================
# Path pattern compiler
# ============================================================================
def flatten_multiple_slashes(path: str) -> str:
    """Collapse every run of consecutive ``/`` into a single one."""
    return re.sub(r"/{2,}", "/", path)


def compile_paths(path: str, path_type: Optional[str]) -> List[str]:
    """Compile an ingress path into the gateway path patterns satisfying its path type.

    Prefix paths produce both a plain prefix pattern (descendants) and a regex
    pattern anchored at the end (the exact segment). Plain patterns always come
    before regex patterns. Unknown path types yield an empty list; Kubernetes
    admission rejects them already, so callers treat that as "nothing to route".

    For example:
        compile_paths("/foo", "Prefix") == ["/foo/", "~/foo$"]
        compile_paths("/foo", "Exact") == ["~/foo$"]
        compile_paths("", "ImplementationSpecific") == ["/"]

    Args:
        path: The ingress path value
        path_type: The ingress path type

    Returns:
        Ordered list of gateway path patterns
    """
    route_paths: List[str] = []
    route_regex_paths: List[str] = []

    if path_type == PathType.Prefix:
        base = path.strip("/")
        if not base:
            route_paths.append("/")
        else:
            route_paths.append(f"/{base}/")
            route_regex_paths.append(f"{KONG_PATH_REGEX_PREFIX}/{base}$")
    elif path_type == PathType.Exact:
        relative = path.lstrip("/")
        route_regex_paths.append(f"{KONG_PATH_REGEX_PREFIX}/{relative}$")
    elif path_type == PathType.ImplementationSpecific:
        route_paths.append(path or "/")
    else:
        logger.debug(f"Ignoring path {path!r} with unsupported path type {path_type!r}")
        return []

    return route_paths + route_regex_paths


def maybe_prepend_regex_prefix(path: str, controller_prefix: str, apply_legacy_heuristic: bool) -> str:
    """Mark a path as a regex for the gateway when it is meant to be one.

    A path starting with the controller prefix gets that prefix replaced by the
    gateway's regex marker. Otherwise, with the legacy heuristic enabled, a path
    containing any character outside ``[a-zA-Z0-9.-_~/%]`` is taken to be a
    regex and the marker is prepended unless already present.
    """
    if path.startswith(controller_prefix):
        return KONG_PATH_REGEX_PREFIX + path[len(controller_prefix):]
    if apply_legacy_heuristic and not LEGACY_REGEX_PATH_EXPRESSION.match(path):
        if not path.startswith(KONG_PATH_REGEX_PREFIX):
            return KONG_PATH_REGEX_PREFIX + path
    return path


@dataclass(frozen=True)
class RegexPrefixPolicy:
    """How paths of one resource are marked as regexes."""

    prefix: str
    apply_legacy_heuristic: bool = False

    def apply(self, path: str) -> str:
        """Apply the policy to a single path."""
        return maybe_prepend_regex_prefix(path, self.prefix, self.apply_legacy_heuristic)


def regex_prefix_policy_for(resource: Any, config: TranslatorConfig) -> RegexPrefixPolicy:
    """Build the regex prefix policy of a resource.

    The resource's regex-prefix annotation overrides the controller default.
    """
    annotations = _annotations(resource)
    prefix = annotations.get(config.annotation_key(REGEX_PREFIX_ANNOTATION), config.controller_regex_prefix)
    return RegexPrefixPolicy(prefix=prefix, apply_legacy_heuristic=config.enable_legacy_regex_detection)


# ============================================================================
# Rewrite URI template compiler
# ============================================================================
class _RuneType(Enum):
    ESCAPE = "escape"
    MARK = "mark"
    DIGIT = "digit"
    PLAIN = "plain"


def _byte_offsets(text: str):
    offset = 0
    for char in text:
        yield offset, char
        offset += len(char.encode("utf-8"))


def generate_rewrite_uri_config(uri: str) -> str:
    """Compile a rewrite template into the gateway's capture group syntax.

    The template is scanned by a four state machine:
    - PLAIN: plain text. ``$`` moves to MARK, ``\\`` moves to ESCAPE.
    - MARK: ``$`` seen, a decimal digit must follow; it opens a capture reference.
    - DIGIT: inside a capture index. Further decimal digits extend it; anything
      else closes the reference and is handled as in PLAIN.
    - ESCAPE: ``\\`` seen, only ``$`` may follow and is kept literally.

    For example ``/foo/$1`` becomes ``/foo/$(uri_captures[1])`` and ``a\\$b``
    becomes ``a$b``. Positions in error messages are byte offsets into the
    UTF-8 encoded template.

    Raises:
        MalformedTemplateError: on an unexpected character, or when the
            template ends inside an escape or a placeholder
    """
    out: List[str] = []
    state = _RuneType.PLAIN
    for pos, char in _byte_offsets(uri):
        if state is _RuneType.ESCAPE:
            if char != "$":
                raise MalformedTemplateError(f"unexpected {char} at pos {pos}")
            out.append(char)
            state = _RuneType.PLAIN
            continue

        if state is _RuneType.MARK:
            if not char.isdecimal():
                raise MalformedTemplateError(f"unexpected {char} at pos {pos}")
            out.append("$(uri_captures[")
            out.append(char)
            state = _RuneType.DIGIT
            continue

        if state is _RuneType.DIGIT:
            if char.isdecimal():
                out.append(char)
                continue
            out.append("])")
            state = _RuneType.PLAIN

        if char == "$":
            state = _RuneType.MARK
        elif char == "\\":
            state = _RuneType.ESCAPE
        else:
            out.append(char)

    if state is _RuneType.DIGIT:
        out.append("])")
        state = _RuneType.PLAIN

    if state is not _RuneType.PLAIN:
        raise MalformedTemplateError("unexpected end of string")

    return "".join(out)


def rewrite_plugin_for(info: ObjectInfo, rewrite_uris_enabled: bool, config: TranslatorConfig) -> Optional[Plugin]:
    """Build the URI rewrite plugin a resource asks for through its rewrite annotation.

    Args:
        info: The resource carrying the annotation
        rewrite_uris_enabled: Whether the rewrite feature is turned on
        config: Translator config, for the annotation prefix

    Returns:
        The request-transformer plugin, or None when the resource has no rewrite annotation

    Raises:
        FeatureDisabledError: if the rewrite annotation is set but the feature is off
        MalformedTemplateError: if the rewrite annotation cannot be compiled
    """
    key = config.annotation_key(REWRITE_ANNOTATION)
    if key not in info.annotations:
        return None

    if not rewrite_uris_enabled:
        raise FeatureDisabledError(f"{key} annotation not supported when rewrite uris disabled")

    rewrite_uri = info.annotations[key] or "/"
    uri = generate_rewrite_uri_config(rewrite_uri)
    return Plugin(name=REWRITE_PLUGIN_NAME, config={"replace": {"uri": uri}})


# ============================================================================
# Resource helpers
# ============================================================================
def _annotations(resource: Any) -> dict:
    metadata = getattr(resource, "metadata", None)
    return dict(getattr(metadata, "annotations", None) or {})


def object_info_for(resource: Any) -> ObjectInfo:
    """Describe a lightkube resource or a pydantic route resource as an ObjectInfo."""
    api_version = getattr(resource, "apiVersion", None)
    kind = getattr(resource, "kind", None)
    # lightkube resources always know their type, even when the fields are unset
    api_info = getattr(resource, "_api_info", None)
    if api_info is not None:
        resource_def = api_info.resource
        api_version = api_version or (
            f"{resource_def.group}/{resource_def.version}" if resource_def.group else resource_def.version
        )
        kind = kind or resource_def.kind

    group, _, version = (api_version or "").rpartition("/")
    metadata = resource.metadata
    return ObjectInfo(
        group=group,
        version=version,
        kind=kind or "",
        namespace=metadata.namespace or "",
        name=metadata.name or "",
        uid=metadata.uid or "",
        annotations=_annotations(resource),
    )


def port_def_from_service_backend_port(port: Any) -> PortDef:
    """Convert an ingress ServiceBackendPort into a PortDef; a name wins over a number."""
    if port is not None and port.name:
        return PortDef(mode=PortMode.ByName, name=port.name)
    if port is not None and port.number:
        return PortDef(mode=PortMode.ByNumber, number=port.number)
    return PortDef(mode=PortMode.Implicit)


def extract_user_tags(annotations: dict, config: TranslatorConfig) -> List[str]:
    """Return the user tags listed in the comma separated tags annotation."""
    raw = annotations.get(config.annotation_key(TAGS_ANNOTATION), "")
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def generate_tags_for_object(info: ObjectInfo, config: TranslatorConfig) -> List[str]:
    """Generate the tags identifying the source resource of a gateway object."""
    tags: List[str] = []
    if info.name:
        tags.append(K8S_NAME_TAG_PREFIX + info.name)
    if info.namespace:
        tags.append(K8S_NAMESPACE_TAG_PREFIX + info.namespace)
    if info.kind:
        tags.append(K8S_KIND_TAG_PREFIX + info.kind)
    if info.group:
        tags.append(K8S_GROUP_TAG_PREFIX + info.group)
    if info.version:
        tags.append(K8S_VERSION_TAG_PREFIX + info.version)
    if info.uid:
        tags.append(K8S_UID_TAG_PREFIX + info.uid)
    tags.extend(extract_user_tags(info.annotations, config))
    return tags

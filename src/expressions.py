#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Builders for the gateway's route expression language.

Expressions are composed from predicates (``field op value``) joined by
``||`` and ``&&``. A composite with a single member renders as that member;
with more, every member is parenthesised.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Union

from utils import PathType

logger = logging.getLogger(__name__)

# Operators
OP_EQUAL = "=="
OP_PREFIX_MATCH = "^="
OP_SUFFIX_MATCH = "=^"
OP_REGEX_MATCH = "~"

# Fields
FIELD_NET_DST_PORT = "net.dst.port"
FIELD_HTTP_HOST = "http.host"
FIELD_HTTP_PATH = "http.path"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class Predicate:
    """A single comparison, e.g. ``net.dst.port == 80``."""

    def __init__(self, field: str, operator: str, value: Union[str, int]):
        self.field = field
        self.operator = operator
        self.value = value

    def expression(self) -> str:
        """Render the predicate."""
        value = self.value if isinstance(self.value, int) else _quote(self.value)
        return f"{self.field} {self.operator} {value}"


class _CompositeMatcher:
    joiner = ""

    def __init__(self, *matchers: "Matcher"):
        self.matchers: List["Matcher"] = [m for m in matchers if m is not None]

    def is_empty(self) -> bool:
        """Return True when the matcher would render to an empty expression."""
        return not any(m.expression() for m in self.matchers)

    def expression(self) -> str:
        """Render the composite matcher."""
        rendered = [m.expression() for m in self.matchers]
        rendered = [r for r in rendered if r]
        if not rendered:
            return ""
        if len(rendered) == 1:
            return rendered[0]
        return f" {self.joiner} ".join(f"({r})" for r in rendered)


class OrMatcher(_CompositeMatcher):
    """Matches when any member matches."""

    joiner = "||"


class AndMatcher(_CompositeMatcher):
    """Matches when every member matches."""

    joiner = "&&"


Matcher = Union[Predicate, OrMatcher, AndMatcher]


# ============================================================================
# L4
# ============================================================================
def compile_l4_expression(ports: Sequence[int]) -> str:
    """Compile the match expression of one L4 rule.

    Args:
        ports: Destination ports of the rule's backends, in backend order

    Returns:
        The OR of one ``net.dst.port == N`` predicate per port

    Raises:
        ValueError: if no port is given
    """
    if not ports:
        raise ValueError("at least one backend port is required to build an L4 expression")
    return OrMatcher(*(Predicate(FIELD_NET_DST_PORT, OP_EQUAL, port) for port in ports)).expression()


# ============================================================================
# HTTP
# ============================================================================
def host_matcher(host: str) -> Predicate:
    """Match a host exactly, or by suffix for a leading ``*`` wildcard."""
    if host.startswith("*"):
        return Predicate(FIELD_HTTP_HOST, OP_SUFFIX_MATCH, host[1:])
    return Predicate(FIELD_HTTP_HOST, OP_EQUAL, host)


def path_matcher(path: str, path_type: Optional[str], regex_prefix: str) -> Optional[Matcher]:
    """Translate one ingress path into a path matcher.

    Unknown path types produce no matcher, mirroring the path pattern compiler.
    """
    if path_type == PathType.Prefix:
        base = path.strip("/")
        if not base:
            return Predicate(FIELD_HTTP_PATH, OP_PREFIX_MATCH, "/")
        return OrMatcher(
            Predicate(FIELD_HTTP_PATH, OP_EQUAL, f"/{base}"),
            Predicate(FIELD_HTTP_PATH, OP_PREFIX_MATCH, f"/{base}/"),
        )
    if path_type == PathType.Exact:
        relative = path.lstrip("/")
        return Predicate(FIELD_HTTP_PATH, OP_EQUAL, f"/{relative}")
    if path_type == PathType.ImplementationSpecific:
        if not path:
            return Predicate(FIELD_HTTP_PATH, OP_PREFIX_MATCH, "/")
        if path.startswith(regex_prefix):
            regex = path[len(regex_prefix):]
            if not regex.startswith("^"):
                regex = "^" + regex
            return Predicate(FIELD_HTTP_PATH, OP_REGEX_MATCH, regex)
        return Predicate(FIELD_HTTP_PATH, OP_PREFIX_MATCH, path)

    logger.debug(f"No path matcher for unsupported path type {path_type!r}")
    return None


def compile_http_expression(
    host: Optional[str], paths: Iterable[tuple], regex_prefix: str
) -> str:
    """Compile the match expression of one HTTP route.

    Args:
        host: The ingress rule host, if any
        paths: (path, path_type) pairs accumulated for the route
        regex_prefix: Prefix marking an implementation specific path as a regex

    Returns:
        The AND of the host matcher and the OR of every path matcher
    """
    path_matchers = OrMatcher(
        *(path_matcher(path, path_type, regex_prefix) for path, path_type in paths)
    )
    matchers: List[Matcher] = []
    if host:
        matchers.append(host_matcher(host))
    if not path_matchers.is_empty():
        matchers.append(path_matchers)
    return AndMatcher(*matchers).expression()

#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Per-resource translation failures.

A failure explains why one resource produced no gateway configuration. Failures
never abort a translation pass; they are collected and handed to the caller,
which reports them upstream (for example as resource events).
"""
import logging
from typing import List

from pydantic import BaseModel

from models import ObjectInfo

logger = logging.getLogger(__name__)


class ResourceFailure(BaseModel):
    """ResourceFailure ties a message to the resources that caused it."""

    causing_objects: List[ObjectInfo]
    message: str


class ResourceFailuresCollector:
    """Accumulates resource failures for one translation pass."""

    def __init__(self):
        self._failures: List[ResourceFailure] = []

    def push_resource_failure(self, message: str, *causing_objects: ObjectInfo) -> None:
        """Record a failure caused by one or more resources.

        Args:
            message: Why the resources could not be translated
            causing_objects: The resources the failure is attributed to

        Raises:
            ValueError: if the message is empty or no causing object is given
        """
        if not message:
            raise ValueError("resource failure message must not be empty")
        if not causing_objects:
            raise ValueError("at least one causing object is required")

        failure = ResourceFailure(causing_objects=list(causing_objects), message=message)
        for obj in causing_objects:
            logger.error(f"Translation failed for {obj.identity()}: {message}")
        self._failures.append(failure)

    def pop_resource_failures(self) -> List[ResourceFailure]:
        """Return the collected failures and reset the collector."""
        failures = self._failures
        self._failures = []
        return failures

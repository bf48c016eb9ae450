#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""Configuration schema for the ingress translator."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator

DEFAULT_CONTROLLER_REGEX_PREFIX = "/~"
DEFAULT_ANNOTATION_PREFIX = "konghq.com"


class FeatureFlags(BaseModel):
    """Feature toggles fixed for the duration of a translation pass."""

    # Emit expression based routes instead of the traditional paths/hosts shape.
    expression_routes: bool = False
    # Honour the rewrite annotation on ingresses.
    rewrite_uris: bool = False


class TranslatorConfig(BaseModel):
    """TranslatorConfig holds every setting the translator reads."""

    feature_flags: FeatureFlags = FeatureFlags()
    enable_legacy_regex_detection: bool = False
    controller_regex_prefix: str = DEFAULT_CONTROLLER_REGEX_PREFIX
    annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX

    @field_validator("controller_regex_prefix")
    @classmethod
    def validate_controller_regex_prefix(cls, value: str) -> str:
        """Validate that the regex prefix is not empty."""
        if not value:
            raise ValueError("controller_regex_prefix must not be empty")
        return value

    @field_validator("annotation_prefix")
    @classmethod
    def validate_annotation_prefix(cls, value: str) -> str:
        """Validate that the annotation prefix is a bare domain."""
        if not value or value.endswith("/"):
            raise ValueError("annotation_prefix must be a non-empty domain without a trailing '/'")
        return value

    def annotation_key(self, name: str) -> str:
        """Return the fully qualified annotation key, e.g. ``konghq.com/rewrite``."""
        return f"{self.annotation_prefix}/{name}"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranslatorConfig":
        """Build a config from a plain mapping, such as parsed YAML."""
        if not data:
            return cls()
        return cls.model_validate(data)

#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

import pytest

from config import FeatureFlags, TranslatorConfig


@pytest.fixture
def config():
    """Default translator config: traditional routes, no rewrites, no legacy regex detection."""
    return TranslatorConfig()


@pytest.fixture
def expression_config():
    """Translator config emitting expression based routes."""
    return TranslatorConfig(feature_flags=FeatureFlags(expression_routes=True))


@pytest.fixture
def rewrite_config():
    """Translator config with URI rewrites turned on."""
    return TranslatorConfig(feature_flags=FeatureFlags(rewrite_uris=True))

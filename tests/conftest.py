"""
Shared pytest fixtures.

Fixtures provided:
- mock_registry: in-memory registry seeded with sample repositories
- registry: RegistryRef for a custom (uncapped) registry
- github_registry: RegistryRef for a GitHub registry (writes serialized)
- manager: RegistryManager whose clients talk to mock_registry
- service: RegistryV2Service on top of manager
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mock_registry import MOCK_REGISTRY_URL, MockRegistry, make_manifest
from registry_client import RegistryManager
from registry_models import RegistryRef, RegistryType
from registry_service import RegistryV2Service


@pytest.fixture
def mock_registry():
    return MockRegistry.with_sample_data()


@pytest.fixture
def manager(mock_registry):
    return RegistryManager(
        registry_configs=[
            {"id": "local", "url": MOCK_REGISTRY_URL, "type": RegistryType.CUSTOM},
            {"id": "ghcr", "url": MOCK_REGISTRY_URL, "type": RegistryType.GITHUB},
        ],
        transport=mock_registry.transport(),
    )


@pytest.fixture
def registry():
    return RegistryRef(id="local", type=RegistryType.CUSTOM)


@pytest.fixture
def github_registry():
    return RegistryRef(id="ghcr", type=RegistryType.GITHUB)


@pytest.fixture
def service(manager):
    return RegistryV2Service(manager)


@pytest.fixture
def two_tag_repository(mock_registry):
    """Repository `app` with tags a and b on distinct manifests"""
    mock_registry.put("app", "a", make_manifest("app", "a"))
    mock_registry.put("app", "b", make_manifest("app", "b"))
    return "app"

"""
Tests for the registry capability policy
"""

import pytest

import capability_policy
from capability_policy import RegistryCapabilities, capabilities_for, concurrency_step_for, register_capabilities
from registry_models import RegistryType


class TestCapabilityPolicy:
    def test_github_writes_are_serialized(self):
        assert concurrency_step_for(RegistryType.GITHUB) == 1

    @pytest.mark.parametrize("registry_type", [t for t in RegistryType if t != RegistryType.GITHUB])
    def test_other_vendors_are_uncapped(self, registry_type):
        assert concurrency_step_for(registry_type) is None

    @pytest.mark.parametrize("value", [8, "8", "github", "GITHUB"])
    def test_type_may_be_given_by_number_or_name(self, value):
        assert concurrency_step_for(value) == 1

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            capabilities_for("harbor")

    def test_new_vendor_entries_can_be_registered(self, monkeypatch):
        monkeypatch.setattr(capability_policy, "_CAPABILITIES", dict(capability_policy._CAPABILITIES))

        register_capabilities(RegistryType.GITLAB, RegistryCapabilities(max_write_concurrency=3))

        assert concurrency_step_for(RegistryType.GITLAB) == 3
        assert concurrency_step_for(RegistryType.GITHUB) == 1

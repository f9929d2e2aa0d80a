"""
Registry Capability Policy

Per-vendor behavioral deviations, keyed by registry type. Vendors without an
entry get the default capabilities.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from registry_models import RegistryType


@dataclass(frozen=True)
class RegistryCapabilities:
    # None means writes may run with no concurrency cap
    max_write_concurrency: Optional[int] = None


DEFAULT_CAPABILITIES = RegistryCapabilities()

_CAPABILITIES: Dict[RegistryType, RegistryCapabilities] = {
    # ghcr.io rejects concurrent tag and manifest writes
    RegistryType.GITHUB: RegistryCapabilities(max_write_concurrency=1),
}


def capabilities_for(registry_type) -> RegistryCapabilities:
    """Look up the capabilities of a registry type"""
    return _CAPABILITIES.get(RegistryType.parse(registry_type), DEFAULT_CAPABILITIES)


def concurrency_step_for(registry_type) -> Optional[int]:
    """Write concurrency step for a registry type, None when uncapped"""
    return capabilities_for(registry_type).max_write_concurrency


def register_capabilities(registry_type, capabilities: RegistryCapabilities) -> None:
    """Add or replace the entry for a registry type"""
    _CAPABILITIES[RegistryType.parse(registry_type)] = capabilities

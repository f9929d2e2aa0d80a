"""
Manifest Resolver

Turns the schema-v1 and schema-v2 manifests of a tag into one TagDetail.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from registry_client import RegistryClient
from registry_errors import ManifestResolutionError
from registry_models import ShortTag, TagDetail

logger = logging.getLogger(__name__)


def _decode_history(manifest_v1: Dict[str, Any]) -> List[Dict[str, Any]]:
    history = []
    for entry in manifest_v1.get("history") or []:
        raw = entry.get("v1Compatibility")
        if not raw:
            continue
        try:
            history.append(json.loads(raw))
        except ValueError:
            logger.debug(f"Skipping undecodable v1Compatibility entry for {manifest_v1.get('tag')}")
    return history


def _layers_size(manifest_v2: Dict[str, Any]) -> Optional[int]:
    layers = manifest_v2.get("layers")
    if layers is None:
        return None
    return sum(layer.get("size", 0) for layer in layers)


def manifests_to_tag(tag: str, manifest_v1: Optional[Dict[str, Any]],
                     manifest_v2: Optional[Dict[str, Any]]) -> TagDetail:
    """Merge whichever manifests were retrieved; schema-v2 wins for digest and size"""
    name = None
    os_name = None
    architecture = None
    history: List[Dict[str, Any]] = []
    size = None
    image_id = None
    digest = None

    if manifest_v1 is not None:
        name = manifest_v1.get("tag")
        architecture = manifest_v1.get("architecture")
        history = _decode_history(manifest_v1)
        if history:
            os_name = history[0].get("os")
            image_id = history[0].get("id")
        digest = manifest_v1.get("digest")

    if manifest_v2 is not None:
        size = _layers_size(manifest_v2)
        config = manifest_v2.get("config") or {}
        image_id = config.get("digest") or image_id
        digest = manifest_v2.get("digest") or digest

    return TagDetail(
        name=name or tag,
        os=os_name,
        architecture=architecture,
        size=size,
        image_digest=digest,
        image_id=image_id,
        manifest_v2=manifest_v2,
        history=history,
    )


async def resolve_tag(client: RegistryClient, repository: str, tag: str) -> TagDetail:
    """Fetch both manifest schemas concurrently and merge them"""
    manifest_v1, manifest_v2 = await asyncio.gather(
        client.get_manifest_v1(repository, tag),
        client.get_manifest_v2(repository, tag),
        return_exceptions=True,
    )
    v1_failed = isinstance(manifest_v1, Exception)
    v2_failed = isinstance(manifest_v2, Exception)

    if v1_failed and v2_failed:
        raise ManifestResolutionError(tag, manifest_v2) from manifest_v2
    if v1_failed:
        logger.debug(f"{repository}:{tag} schema-v1 manifest unavailable: {manifest_v1}")
    if v2_failed:
        logger.debug(f"{repository}:{tag} schema-v2 manifest unavailable: {manifest_v2}")

    return manifests_to_tag(
        tag,
        None if v1_failed else manifest_v1,
        None if v2_failed else manifest_v2,
    )


async def resolve_short_tag(client: RegistryClient, repository: str, tag: str) -> ShortTag:
    """Schema-v2 only resolution used by batch operations"""
    manifest = await client.get_manifest_v2(repository, tag)
    config = manifest.get("config") or {}
    return ShortTag(
        name=tag,
        image_id=config.get("digest"),
        image_digest=manifest.get("digest"),
        manifest_v2=manifest,
    )

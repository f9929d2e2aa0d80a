"""
Registry V2 Service

Public entry points used by the front ends: catalog and tag listings,
tag resolution, and the multi-item write workflows.

Registries have no rename primitive, so retagging and deleting a subset of
the tags sharing a manifest are done in two phases: delete the affected
manifests, then PUT back every impacted tag (renamed where asked). Phase 2
starts only after phase 1 has settled. Nothing is rolled back if phase 2
fails; the tags that could not be recreated are logged as warnings.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from batch_executor import ProgressEvent, collect_results, run_batch
from capability_policy import concurrency_step_for
from manifest_resolver import resolve_short_tag, resolve_tag
from pagination import paginate
from registry_client import RegistryManager
from registry_errors import EmptyTagListing, RegistryHTTPError
from registry_models import (AddTagPayload, BatchProgress, ItemResult, Page, PageCursor,
                             RegistryRef, Repository, ShortTag, TagDetail, TagRename)

logger = logging.getLogger(__name__)

__all__ = [
    "RegistryV2Service",
    "collect_results",
    "plan_retag",
    "plan_tag_deletion",
]


def _unique_digests(tags: Iterable[ShortTag]) -> List[str]:
    digests: List[str] = []
    for tag in tags:
        if tag.image_digest and tag.image_digest not in digests:
            digests.append(tag.image_digest)
    return digests


def plan_retag(short_tags: Sequence[ShortTag],
               renames: Sequence[TagRename]) -> Tuple[List[str], List[ShortTag]]:
    """Digests to delete and tags to recreate for a set of renames.

    Every tag sharing a manifest with a renamed tag is impacted, because
    deleting the manifest removes all of its tags.
    """
    renamed = {rename.name for rename in renames if rename.name != rename.new_name}
    modified = [tag for tag in short_tags if tag.name in renamed]
    digests = _unique_digests(modified)
    impacted = [tag for tag in short_tags if tag.image_digest in digests]
    return digests, impacted


def plan_tag_deletion(short_tags: Sequence[ShortTag],
                      names: Iterable[str]) -> Tuple[List[str], List[ShortTag]]:
    """Digests to delete and the surviving tags to restore when deleting `names`"""
    deleted = set(names)
    digests = _unique_digests(tag for tag in short_tags if tag.name in deleted)
    impacted = [tag for tag in short_tags if tag.image_digest in digests and tag.name not in deleted]
    return digests, impacted


class RegistryV2Service:
    """Catalog, tag and manifest operations against Registry V2 endpoints"""

    def __init__(self, manager: RegistryManager):
        self.manager = manager

    async def ping(self, registry: RegistryRef) -> bool:
        return await self.manager.client_for(registry).ping()

    # Repositories

    async def list_repositories(self, registry: RegistryRef) -> List[Repository]:
        """Walk the whole catalog"""
        client = self.manager.client_for(registry)
        names = await paginate(client.get_catalog_page, description=f"repositories of {registry.id}")
        return [Repository(name=name) for name in names]

    async def get_repositories_details(self, registry: RegistryRef,
                                       repositories: Sequence[Repository]) -> List[Repository]:
        """Attach tag counts, listing every repository concurrently"""
        listings = await asyncio.gather(*(self.list_tags(registry, repo.name) for repo in repositories))
        return [Repository(name=listing["name"], tags_count=len(listing["tags"])) for listing in listings]

    # Tags

    async def list_tags(self, registry: RegistryRef, repository: str) -> Dict[str, Any]:
        """Walk a repository's tag list; a repository without tags may answer 404"""
        client = self.manager.client_for(registry)

        async def fetch_page(cursor: Optional[PageCursor]) -> Page[str]:
            try:
                return await client.get_tags_page(repository, cursor)
            except RegistryHTTPError as e:
                if e.not_found:
                    raise EmptyTagListing(f"No tags listed for {repository}", e) from e
                raise

        tags = await paginate(fetch_page, description=f"tags of {repository}")
        return {"name": repository, "tags": tags}

    async def resolve_tag(self, registry: RegistryRef, repository: str, tag: str) -> TagDetail:
        return await resolve_tag(self.manager.client_for(registry), repository, tag)

    async def get_tags_details(self, registry: RegistryRef, repository: str,
                               tag_names: Sequence[str]) -> List[TagDetail]:
        """Resolve several tags; fails as a whole if any tag cannot be resolved"""
        client = self.manager.client_for(registry)
        return list(await asyncio.gather(*(resolve_tag(client, repository, name) for name in tag_names)))

    def resolve_short_tags_with_progress(self, registry: RegistryRef, repository: str,
                                         tag_names: Sequence[str]) -> AsyncIterator[ProgressEvent]:
        """Progress stream whose successful ItemResult values are ShortTag"""
        client = self.manager.client_for(registry)

        async def resolve(tag_name: str) -> ShortTag:
            return await resolve_short_tag(client, repository, tag_name)

        return run_batch(tag_names, resolve)

    # Single writes

    async def add_tag(self, registry: RegistryRef, repository: str, tag: str,
                      manifest: Dict[str, Any]) -> Optional[str]:
        """PUT `manifest` under `tag`; any digest field is dropped first"""
        body = {k: v for k, v in manifest.items() if k != "digest"}
        return await self.manager.client_for(registry).put_manifest(repository, tag, body)

    async def delete_manifest(self, registry: RegistryRef, repository: str, digest: str) -> None:
        await self.manager.client_for(registry).delete_manifest(repository, digest)

    # Batch writes

    async def add_tags_with_progress(self, registry: RegistryRef, repository: str,
                                     payloads: Sequence[AddTagPayload],
                                     offset: BatchProgress = BatchProgress(0)) -> AsyncIterator[ProgressEvent]:
        """PUT every payload; progress values are shifted by `offset`"""

        async def add(payload: AddTagPayload) -> Optional[str]:
            return await self.add_tag(registry, repository, payload.tag, payload.manifest)

        step = concurrency_step_for(registry.type)
        events = run_batch(payloads, add, step)
        try:
            async for event in events:
                if isinstance(event, BatchProgress):
                    yield event.shifted(offset.completed, offset.failed)
                else:
                    yield event
        finally:
            await events.aclose()

    def delete_manifests_with_progress(self, registry: RegistryRef, repository: str,
                                       digests: Sequence[str]) -> AsyncIterator[ProgressEvent]:
        """DELETE every digest"""

        async def delete(digest: str) -> None:
            await self.delete_manifest(registry, repository, digest)

        return run_batch(digests, delete, concurrency_step_for(registry.type))

    async def _delete_then_recreate(self, registry: RegistryRef, repository: str,
                                    digests: Sequence[str],
                                    payloads: List[AddTagPayload]) -> AsyncIterator[ProgressEvent]:
        phase_one = BatchProgress(0)
        deletions = self.delete_manifests_with_progress(registry, repository, digests)
        try:
            async for event in deletions:
                if isinstance(event, BatchProgress):
                    phase_one = event
                yield event
        finally:
            await deletions.aclose()

        # Phase 1 has fully settled here; counts continue from len(digests)
        offset = BatchProgress(len(digests), phase_one.failed)
        lost: List[str] = []
        additions = self.add_tags_with_progress(registry, repository, payloads, offset)
        try:
            async for event in additions:
                if isinstance(event, ItemResult) and not event.ok:
                    lost.append(event.item.tag)
                yield event
        finally:
            await additions.aclose()

        if lost:
            logger.warning(f"{repository}: manifests deleted but tags not recreated: {', '.join(lost)}")

    def retag_with_progress(self, registry: RegistryRef, repository: str,
                            modified_tags: Sequence[TagRename], modified_digests: Sequence[str],
                            impacted_tags: Sequence[ShortTag]) -> AsyncIterator[ProgressEvent]:
        """Delete `modified_digests`, then recreate `impacted_tags` under their new names"""
        renames = {rename.name: rename for rename in modified_tags}
        payloads = []
        for tag in impacted_tags:
            rename = renames.get(tag.name)
            name = rename.new_name if rename and rename.name != rename.new_name else tag.name
            payloads.append(AddTagPayload(tag=name, manifest=tag.manifest_v2))
        logger.info(f"{repository}: retagging {len(modified_tags)} tags over {len(modified_digests)} manifests")
        return self._delete_then_recreate(registry, repository, modified_digests, payloads)

    def delete_tags_with_progress(self, registry: RegistryRef, repository: str,
                                  modified_digests: Sequence[str],
                                  impacted_tags: Sequence[ShortTag]) -> AsyncIterator[ProgressEvent]:
        """Delete `modified_digests`, then restore `impacted_tags` under their own names"""
        payloads = [AddTagPayload(tag=tag.name, manifest=tag.manifest_v2) for tag in impacted_tags]
        logger.info(f"{repository}: deleting {len(modified_digests)} manifests, restoring {len(payloads)} tags")
        return self._delete_then_recreate(registry, repository, modified_digests, payloads)

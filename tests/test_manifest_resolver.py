"""
Tests for manifest resolution and schema merging
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from manifest_resolver import manifests_to_tag, resolve_short_tag, resolve_tag
from registry_errors import ManifestResolutionError, RegistryHTTPError

DIGEST_A = "sha256:" + "a" * 64
DIGEST_B = "sha256:" + "b" * 64
CONFIG_DIGEST = "sha256:" + "c" * 64

MANIFEST_V1 = {
    "schemaVersion": 1,
    "name": "app",
    "tag": "1.0",
    "architecture": "arm64",
    "history": [
        {"v1Compatibility": json.dumps({"id": "top", "os": "linux"})},
        {"v1Compatibility": json.dumps({"id": "base"})},
    ],
    "digest": DIGEST_A,
}

MANIFEST_V2 = {
    "schemaVersion": 2,
    "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
    "config": {"digest": CONFIG_DIGEST, "size": 10},
    "layers": [{"size": 100}, {"size": 23}],
    "digest": DIGEST_B,
}


def fake_client(v1=None, v2=None):
    """Client whose manifest calls return the given dicts or raise the given errors"""
    client = MagicMock()
    client.get_manifest_v1 = AsyncMock(side_effect=v1 if isinstance(v1, Exception) else None,
                                       return_value=v1)
    client.get_manifest_v2 = AsyncMock(side_effect=v2 if isinstance(v2, Exception) else None,
                                       return_value=v2)
    return client


class TestResolveTag:
    """Test merge precedence between schema-v1 and schema-v2"""

    @pytest.mark.asyncio
    async def test_v2_digest_wins_when_both_succeed(self):
        detail = await resolve_tag(fake_client(dict(MANIFEST_V1), dict(MANIFEST_V2)), "app", "1.0")

        assert detail.image_digest == DIGEST_B
        assert detail.image_id == CONFIG_DIGEST
        assert detail.size == 123
        # history and platform still come from schema-v1
        assert detail.name == "1.0"
        assert detail.os == "linux"
        assert detail.architecture == "arm64"
        assert [h["id"] for h in detail.history] == ["top", "base"]

    @pytest.mark.asyncio
    async def test_v1_alone_supplies_digest(self):
        client = fake_client(dict(MANIFEST_V1), RegistryHTTPError("missing", status_code=404))

        detail = await resolve_tag(client, "app", "1.0")

        assert detail.image_digest == DIGEST_A
        assert detail.size is None
        assert detail.manifest_v2 is None

    @pytest.mark.asyncio
    async def test_v2_alone_falls_back_to_requested_name(self):
        client = fake_client(RegistryHTTPError("missing", status_code=404), dict(MANIFEST_V2))

        detail = await resolve_tag(client, "app", "requested")

        assert detail.name == "requested"
        assert detail.image_digest == DIGEST_B
        assert detail.history == []

    @pytest.mark.asyncio
    async def test_both_failing_raises_with_cause(self):
        cause = RegistryHTTPError("server error", status_code=500)
        client = fake_client(RegistryHTTPError("missing", status_code=404), cause)

        with pytest.raises(ManifestResolutionError) as exc_info:
            await resolve_tag(client, "app", "gone")

        assert exc_info.value.message == "Unable to retrieve tag gone"
        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    async def test_both_manifests_are_requested(self):
        client = fake_client(dict(MANIFEST_V1), dict(MANIFEST_V2))

        await resolve_tag(client, "app", "1.0")

        client.get_manifest_v1.assert_awaited_once_with("app", "1.0")
        client.get_manifest_v2.assert_awaited_once_with("app", "1.0")


class TestManifestsToTag:
    def test_undecodable_history_entries_are_skipped(self):
        manifest_v1 = dict(MANIFEST_V1, history=[{"v1Compatibility": "{not json"},
                                                 {"v1Compatibility": json.dumps({"os": "windows"})}])

        detail = manifests_to_tag("1.0", manifest_v1, None)

        assert detail.os == "windows"
        assert len(detail.history) == 1


class TestResolveShortTag:
    @pytest.mark.asyncio
    async def test_uses_v2_manifest_only(self):
        client = fake_client(RegistryHTTPError("unused"), dict(MANIFEST_V2))

        short_tag = await resolve_short_tag(client, "app", "1.0")

        assert short_tag.name == "1.0"
        assert short_tag.image_id == CONFIG_DIGEST
        assert short_tag.image_digest == DIGEST_B
        assert short_tag.manifest_v2["layers"] == MANIFEST_V2["layers"]
        client.get_manifest_v1.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_error_propagates_to_caller(self):
        client = fake_client(None, RegistryHTTPError("missing", status_code=404))

        with pytest.raises(RegistryHTTPError):
            await resolve_short_tag(client, "app", "1.0")

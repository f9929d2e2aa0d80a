"""
Mock Registry

In-memory Registry V2 backend served through httpx.MockTransport. Backs the
--mock command line mode and the test suite.
"""

import asyncio
import hashlib
import json
import re
from typing import Any, Dict, List, Optional, Set

import httpx

MANIFEST_V1_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v1+json"
MANIFEST_V2_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"

MOCK_REGISTRY_URL = "http://mock-registry.local"

_CATALOG_PATH = re.compile(r"^/v2/_catalog$")
_TAGS_PATH = re.compile(r"^/v2/(?P<name>.+)/tags/list$")
_MANIFEST_PATH = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<reference>[^/]+)$")


def _sha256(text: str) -> str:
    return "sha256:" + hashlib.sha256(text.encode()).hexdigest()


def _serialize(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, sort_keys=True).encode()


def make_manifest(repository: str, tag: str, layer_count: int = 3, base_size: int = 5432100) -> Dict[str, Any]:
    """Build a schema-v2 manifest with a plausible layer hierarchy"""
    layers = []
    for i in range(layer_count):
        if i == 0:
            size = base_size
        elif i == layer_count - 1:
            size = base_size // 10
        else:
            size = base_size // (2 + i)
        layers.append({
            "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
            "size": size,
            "digest": _sha256(f"{repository}:{tag}:layer{i}")
        })

    return {
        "schemaVersion": 2,
        "mediaType": MANIFEST_V2_MEDIA_TYPE,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": 1234,
            "digest": _sha256(f"{repository}:{tag}:config")
        },
        "layers": layers
    }


class MockRegistry:
    """Registry V2 API over an in-memory {repository: {tag: manifest}} store"""

    def __init__(self, page_size: Optional[int] = None, schema_v1: bool = True,
                 empty_repository_404: bool = True, reject_concurrent_writes: bool = False,
                 write_delay: float = 0.0):
        self.repositories: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.page_size = page_size
        self.schema_v1 = schema_v1
        self.empty_repository_404 = empty_repository_404
        self.reject_concurrent_writes = reject_concurrent_writes
        self.write_delay = write_delay
        self.failing_tags: Set[str] = set()
        self.failing_digests: Set[str] = set()

        self.requests: List[httpx.Request] = []
        self.writes_in_flight = 0
        self.max_writes_in_flight = 0
        self.rejected_writes = 0

    @classmethod
    def with_sample_data(cls, **kwargs) -> "MockRegistry":
        """Registry seeded with a few well-known repositories"""
        registry = cls(**kwargs)
        samples = {
            "alpine": (["latest", "3.18", "3.17", "edge"], 1, 2500000),
            "library/nginx": (["latest", "1.25", "1.24", "stable-alpine"], 4, 28000000),
            "python": (["latest", "3.11", "3.10", "3.11-slim"], 6, 45000000),
            "webapp": (["v1.0.0", "v1.1.0", "dev", "prod"], 8, 12000000),
        }
        for repository, (tags, layer_count, base_size) in samples.items():
            for tag in tags:
                registry.put(repository, tag, make_manifest(repository, tag, layer_count, base_size))
        # prod points at the same image as v1.1.0
        registry.put("webapp", "prod", registry.repositories["webapp"]["v1.1.0"])
        registry.repositories.setdefault("empty-repo", {})
        return registry

    # Store helpers

    def put(self, repository: str, tag: str, manifest: Dict[str, Any]) -> str:
        self.repositories.setdefault(repository, {})[tag] = dict(manifest)
        return self.digest_of(manifest)

    @staticmethod
    def digest_of(manifest: Dict[str, Any]) -> str:
        return "sha256:" + hashlib.sha256(_serialize(manifest)).hexdigest()

    def tag_digests(self, repository: str) -> Dict[str, str]:
        """{tag: digest} snapshot of a repository"""
        return {tag: self.digest_of(m) for tag, m in self.repositories.get(repository, {}).items()}

    def _manifest_v1(self, repository: str, tag: str, manifest: Dict[str, Any]) -> Dict[str, Any]:
        config_digest = manifest.get("config", {}).get("digest", "")
        return {
            "schemaVersion": 1,
            "name": repository,
            "tag": tag,
            "architecture": "amd64",
            "history": [
                {"v1Compatibility": json.dumps({"id": config_digest.replace("sha256:", ""), "os": "linux"})}
            ]
        }

    # HTTP

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @staticmethod
    def _json_response(status_code: int, document: Dict[str, Any], headers: Dict[str, str] = None) -> httpx.Response:
        return httpx.Response(status_code, content=_serialize(document),
                              headers={"Content-Type": "application/json", **(headers or {})})

    @staticmethod
    def _error(status_code: int, code: str, message: str) -> httpx.Response:
        return MockRegistry._json_response(status_code, {"errors": [{"code": code, "message": message}]})

    def _paged(self, request: httpx.Request, path: str, items: List[str], key: str,
               extra: Dict[str, Any] = None) -> httpx.Response:
        items = sorted(items)
        last = request.url.params.get("last")
        n = request.url.params.get("n")
        n = int(n) if n else self.page_size

        if last:
            items = [item for item in items if item > last]
        headers = {}
        if n and len(items) > n:
            items = items[:n]
            headers["Link"] = f'<{path}?last={items[-1]}&n={n}>; rel="next"'
        return self._json_response(200, {**(extra or {}), key: items}, headers)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in ("/v2", "/v2/"):
            return self._json_response(200, {})

        if _CATALOG_PATH.match(path) and request.method == "GET":
            return self._paged(request, "/v2/_catalog", list(self.repositories), "repositories")

        match = _TAGS_PATH.match(path)
        if match and request.method == "GET":
            name = match.group("name")
            tags = self.repositories.get(name)
            if tags is None or (not tags and self.empty_repository_404):
                return self._error(404, "NAME_UNKNOWN", f"repository {name} not known to registry")
            return self._paged(request, f"/v2/{name}/tags/list", list(tags), "tags", {"name": name})

        match = _MANIFEST_PATH.match(path)
        if match:
            name, reference = match.group("name"), match.group("reference")
            if request.method == "GET":
                return self._get_manifest(request, name, reference)
            if request.method in ("PUT", "DELETE"):
                return await self._write(request, name, reference)

        return self._error(404, "NOT_FOUND", f"{request.method} {path}")

    def _find(self, repository: str, reference: str) -> Optional[Dict[str, Any]]:
        manifests = self.repositories.get(repository, {})
        if reference in manifests:
            return manifests[reference]
        for manifest in manifests.values():
            if self.digest_of(manifest) == reference:
                return manifest
        return None

    def _get_manifest(self, request: httpx.Request, repository: str, reference: str) -> httpx.Response:
        manifest = self._find(repository, reference)
        if manifest is None:
            return self._error(404, "MANIFEST_UNKNOWN", f"manifest {repository}:{reference} unknown")

        accept = request.headers.get("accept", "")
        if MANIFEST_V2_MEDIA_TYPE not in accept and MANIFEST_V1_MEDIA_TYPE in accept:
            if not self.schema_v1:
                return self._error(404, "MANIFEST_UNKNOWN", "schema 1 manifests are not supported")
            # schema-v1 bodies carry no Docker-Content-Digest header
            document = self._manifest_v1(repository, reference, manifest)
            return httpx.Response(200, content=_serialize(document),
                                  headers={"Content-Type": MANIFEST_V1_MEDIA_TYPE})

        return httpx.Response(200, content=_serialize(manifest), headers={
            "Content-Type": manifest.get("mediaType", MANIFEST_V2_MEDIA_TYPE),
            "Docker-Content-Digest": self.digest_of(manifest),
        })

    async def _write(self, request: httpx.Request, repository: str, reference: str) -> httpx.Response:
        if self.reject_concurrent_writes and self.writes_in_flight > 0:
            self.rejected_writes += 1
            return self._error(429, "TOOMANYREQUESTS", "concurrent writes are not allowed")

        self.writes_in_flight += 1
        self.max_writes_in_flight = max(self.max_writes_in_flight, self.writes_in_flight)
        try:
            # yield so overlapping writes are observable
            await asyncio.sleep(self.write_delay)
            if request.method == "PUT":
                return self._put_manifest(request, repository, reference)
            return self._delete_manifest(repository, reference)
        finally:
            self.writes_in_flight -= 1

    def _put_manifest(self, request: httpx.Request, repository: str, tag: str) -> httpx.Response:
        if tag in self.failing_tags:
            return self._error(500, "UNKNOWN", f"cannot store {repository}:{tag}")
        try:
            manifest = json.loads(request.content)
        except ValueError:
            return self._error(400, "MANIFEST_INVALID", "manifest is not valid JSON")
        if "digest" in manifest:
            return self._error(400, "MANIFEST_INVALID", "unexpected field digest")

        digest = self.put(repository, tag, manifest)
        return httpx.Response(201, headers={"Docker-Content-Digest": digest,
                                            "Location": f"/v2/{repository}/manifests/{digest}"})

    def _delete_manifest(self, repository: str, digest: str) -> httpx.Response:
        if digest in self.failing_digests:
            return self._error(500, "UNKNOWN", f"cannot delete {digest}")
        manifests = self.repositories.get(repository, {})
        doomed = [tag for tag, manifest in manifests.items() if self.digest_of(manifest) == digest]
        if not doomed:
            return self._error(404, "MANIFEST_UNKNOWN", f"manifest {digest} unknown")
        for tag in doomed:
            del manifests[tag]
        return httpx.Response(202)

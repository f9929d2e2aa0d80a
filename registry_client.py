"""
Registry V2 HTTP Client

One httpx client per registry, plus the RegistryManager that resolves a
RegistryRef to an open client. Every call is kept in a short API call log
and mirrored to the debug logger when one is set.
"""

import base64
import hashlib
import json
import re
import time
import urllib.parse
from typing import Any, Dict, List, Optional

import httpx

from registry_errors import ConfigurationError, PageFetchError, RegistryHTTPError
from registry_models import Page, PageCursor, RegistryRef, RegistryType

MANIFEST_V1_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v1+json"
MANIFEST_V2_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"

# Accept headers for the two manifest schemas; the URL is the same
MANIFEST_V1_ACCEPT = MANIFEST_V1_MEDIA_TYPE
MANIFEST_V2_ACCEPT = ", ".join([
    MANIFEST_V2_MEDIA_TYPE,
    "application/vnd.oci.image.manifest.v1+json",
])

API_CALL_LOG_SIZE = 100


def parse_link_header(link_header: str) -> Dict[str, str]:
    """Parse a Link header into {rel: url}"""
    links = {}
    if link_header:
        # <url>; rel="next", <url2>; rel="prev"
        for url, rel in re.findall(r'<([^>]+)>;\s*rel="([^"]+)"', link_header):
            links[rel] = url
    return links


def cursor_from_response(body: Dict[str, Any], headers: httpx.Headers,
                         requested: Optional[PageCursor] = None) -> Optional[PageCursor]:
    """Continuation cursor from the body (`last` + `n`) or the Link header.

    In the body both the marker and the page size must be present, otherwise
    the listing is complete. A rel="next" link always continues the walk: a
    page size missing from it falls back to the one last requested, and a
    link without a `last` marker is an error.
    """
    last = body.get("last")
    n = body.get("n")
    if last and n:
        return PageCursor(last=last, n=int(n))

    links = parse_link_header(headers.get("link", ""))
    if "next" not in links:
        return None
    params = urllib.parse.parse_qs(urllib.parse.urlparse(links["next"]).query)
    last = params.get("last", [None])[0]
    if not last:
        raise PageFetchError(f"Next page link has no last marker: {links['next']}")
    n = params.get("n", [None])[0] or (requested.n if requested else None)
    return PageCursor(last=last, n=int(n) if n else None)


def page_params(cursor: Optional[PageCursor]) -> Optional[Dict[str, Any]]:
    """Query parameters for a page request; `n` is left out when unknown"""
    if cursor is None:
        return None
    params: Dict[str, Any] = {"last": cursor.last}
    if cursor.n:
        params["n"] = cursor.n
    return params


def manifest_digest(response: httpx.Response) -> str:
    """Docker-Content-Digest header, or the sha256 of the body the registry sent"""
    digest = response.headers.get("docker-content-digest")
    if digest:
        return digest
    return "sha256:" + hashlib.sha256(response.content).hexdigest()


class RegistryClient:
    """HTTP client for the Docker Registry API v2"""

    def __init__(self, base_url: str, timeout: float = 30, username: str = None, password: str = None,
                 auth_type: str = "none", verify_tls: bool = True, endpoint_id: Optional[int] = None,
                 debug_logger=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.username = username
        self.password = password
        self.auth_type = auth_type  # "basic", "bearer" or "none"
        self.verify_tls = verify_tls
        self.endpoint_id = endpoint_id
        self.debug_logger = debug_logger
        self.transport = transport
        self.session: Optional[httpx.AsyncClient] = None
        self.api_call_log: List[Dict[str, Any]] = []

    def _filter_response_headers(self, headers: httpx.Headers) -> Dict[str, str]:
        """Keep headers that are safe to log; drop anything auth related"""
        safe_headers = {
            'content-type', 'content-length', 'date',
            'link', 'location',
            'docker-content-digest', 'docker-distribution-api-version',
            'x-ratelimit-limit', 'x-ratelimit-remaining', 'x-ratelimit-reset',
        }
        filtered = {}
        for key, value in headers.items():
            lowered = key.lower()
            if lowered in safe_headers:
                filtered[key] = value
            elif lowered.startswith('x-') and not any(s in lowered for s in ['auth', 'token', 'key', 'secret']):
                filtered[key] = value
        return filtered

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def open(self) -> None:
        if self.session is None:
            kwargs = {
                "timeout": self.timeout,
                "verify": self.verify_tls,
                "follow_redirects": True,
                "headers": {"User-Agent": "registry-catalog-sync/0.1.0"},
            }
            if self.transport is not None:
                kwargs["transport"] = self.transport
            self.session = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        if self.session is not None:
            await self.session.aclose()
            self.session = None

    def _get_basic_auth_header(self) -> Dict[str, str]:
        if not self.username or not self.password:
            return {}
        credentials = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}

    def _get_bearer_auth_header(self) -> Dict[str, str]:
        if self.password:
            return {"Authorization": f"Bearer {self.password}"}
        return {}

    def _get_auth_headers(self) -> Dict[str, str]:
        if self.auth_type == "basic":
            return self._get_basic_auth_header()
        if self.auth_type == "bearer":
            return self._get_bearer_auth_header()
        return {}

    def _record_call(self, call_data: Dict[str, Any]) -> None:
        self.api_call_log.append(call_data)
        if len(self.api_call_log) > API_CALL_LOG_SIZE:
            self.api_call_log = self.api_call_log[-API_CALL_LOG_SIZE:]
        if self.debug_logger:
            self.debug_logger.debug("Registry API call",
                                    method=call_data["method"],
                                    url=call_data["url"],
                                    status_code=call_data["status_code"],
                                    duration_ms=call_data["duration_ms"])

    async def _make_request(self, method: str, endpoint: str, params: Dict[str, Any] = None,
                            headers: Dict[str, str] = None, content: bytes = None) -> httpx.Response:
        """Send a request and raise RegistryHTTPError on anything but 2xx"""
        if self.session is None:
            await self.open()

        url = self.base_url + '/' + endpoint.lstrip('/')
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.endpoint_id is not None:
            query["endpointId"] = self.endpoint_id

        request_headers = dict(headers or {})
        request_headers.update(self._get_auth_headers())

        start_time = time.time()
        try:
            response = await self.session.request(method, url, params=query, headers=request_headers,
                                                  content=content)
        except httpx.HTTPError as e:
            duration = int((time.time() - start_time) * 1000)
            self._record_call({
                "url": url,
                "method": method,
                "status_code": 0,
                "duration_ms": duration,
                "size_bytes": 0,
                "headers": {},
                "content_preview": f"Error: {e}",
                "timestamp": time.strftime("%H:%M:%S"),
                "error": str(e),
            })
            raise RegistryHTTPError(f"{method} {url} failed", status_code=0, url=url, cause=e) from e

        duration = int((time.time() - start_time) * 1000)
        self._record_call({
            "url": str(response.request.url),
            "method": method,
            "status_code": response.status_code,
            "duration_ms": duration,
            "size_bytes": len(response.content),
            "headers": self._filter_response_headers(response.headers),
            "content_preview": response.text[:500] if response.content else "",
            "timestamp": time.strftime("%H:%M:%S"),
        })

        if not response.is_success:
            raise RegistryHTTPError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RegistryHTTPError("Registry returned invalid JSON", status_code=response.status_code,
                                    url=str(response.request.url), cause=e) from e

    async def ping(self) -> bool:
        """Check the registry answers the API v2 base endpoint (GET /v2/)"""
        await self._make_request("GET", "/v2/")
        return True

    async def get_catalog_page(self, cursor: Optional[PageCursor] = None) -> Page[str]:
        """One page of GET /v2/_catalog"""
        params = page_params(cursor)
        response = await self._make_request("GET", "/v2/_catalog", params=params)
        body = self._json(response)
        return Page(items=list(body.get("repositories") or []),
                    next_cursor=cursor_from_response(body, response.headers, cursor))

    async def get_tags_page(self, repository: str, cursor: Optional[PageCursor] = None) -> Page[str]:
        """One page of GET /v2/{name}/tags/list"""
        params = page_params(cursor)
        response = await self._make_request("GET", f"/v2/{repository}/tags/list", params=params)
        body = self._json(response)
        return Page(items=list(body.get("tags") or []),
                    next_cursor=cursor_from_response(body, response.headers, cursor))

    async def _get_manifest(self, repository: str, reference: str, accept: str) -> Dict[str, Any]:
        response = await self._make_request("GET", f"/v2/{repository}/manifests/{reference}",
                                            headers={"Accept": accept})
        manifest = self._json(response)
        manifest["digest"] = manifest_digest(response)
        return manifest

    async def get_manifest_v1(self, repository: str, reference: str) -> Dict[str, Any]:
        """Schema-v1 manifest, with its digest attached under `digest`"""
        return await self._get_manifest(repository, reference, MANIFEST_V1_ACCEPT)

    async def get_manifest_v2(self, repository: str, reference: str) -> Dict[str, Any]:
        """Schema-v2 manifest, with its digest attached under `digest`"""
        return await self._get_manifest(repository, reference, MANIFEST_V2_ACCEPT)

    async def put_manifest(self, repository: str, tag: str, manifest: Dict[str, Any]) -> Optional[str]:
        """PUT a manifest under `tag`; returns the digest the registry reports"""
        body = {k: v for k, v in manifest.items() if k != "digest"}
        media_type = body.get("mediaType", MANIFEST_V2_MEDIA_TYPE)
        response = await self._make_request("PUT", f"/v2/{repository}/manifests/{tag}",
                                            headers={"Content-Type": media_type},
                                            content=json.dumps(body).encode())
        return response.headers.get("docker-content-digest")

    async def delete_manifest(self, repository: str, digest: str) -> None:
        await self._make_request("DELETE", f"/v2/{repository}/manifests/{digest}")


class RegistryManager:
    """Manages one client per configured registry"""

    def __init__(self, registry_configs: List[Dict[str, Any]] = None, timeout: float = 30,
                 debug_logger=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.debug_logger = debug_logger
        self.transport = transport
        self._configs: Dict[str, Dict[str, Any]] = {}
        self._clients: Dict[str, RegistryClient] = {}
        for config in registry_configs or []:
            self.add_registry(config)

    def set_debug_logger(self, debug_logger):
        self.debug_logger = debug_logger
        for client in self._clients.values():
            client.debug_logger = debug_logger

    def add_registry(self, registry_config: Dict[str, Any]) -> RegistryRef:
        """Register a registry config dict (id, url, type, auth settings)"""
        registry_id = str(registry_config["id"])
        try:
            registry_type = RegistryType.parse(registry_config.get("type"))
        except ValueError as e:
            raise ConfigurationError(f"Registry {registry_id} has an invalid type", e) from e
        self._configs[registry_id] = registry_config
        return RegistryRef(id=registry_id, type=registry_type, name=registry_config.get("name", ""))

    def client_for(self, registry: RegistryRef) -> RegistryClient:
        """Return the client for a registry, creating it on first use"""
        client = self._clients.get(registry.id)
        if client is not None:
            return client

        registry_config = self._configs.get(registry.id)
        if registry_config is None:
            raise ConfigurationError(f"Unknown registry id {registry.id}")

        client = RegistryClient(
            base_url=registry_config["url"],
            timeout=registry_config.get("timeout", self.timeout),
            username=registry_config.get("username"),
            password=registry_config.get("password"),
            auth_type=registry_config.get("auth_type", "none"),
            verify_tls=registry_config.get("verify_tls", True),
            endpoint_id=registry_config.get("endpoint_id"),
            debug_logger=self.debug_logger,
            transport=self.transport,
        )
        self._clients[registry.id] = client
        return client

    def api_calls(self) -> List[Dict[str, Any]]:
        """API calls recorded by every open client"""
        calls = [call for client in self._clients.values() for call in client.api_call_log]
        return calls

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

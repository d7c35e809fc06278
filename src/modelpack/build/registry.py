"""
Remote base image metadata.

Fetches a base image's manifest and config blob from its registry over the
Docker Registry HTTP API v2 to find the layer lineage recorded in labels.
Only anonymous bearer-token auth is supported.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import (
    REGISTRY_BACKOFF_BASE,
    REGISTRY_MAX_ATTEMPTS,
    REGISTRY_TIMEOUT_SECONDS,
)
from ..core.utils.retry import RetryExhaustedError, retry_with_backoff
from ..exceptions import RegistryError

log = logging.getLogger(__name__)

DOCKER_HUB_REGISTRY = "registry-1.docker.io"

INDEX_MEDIA_TYPES = {
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
}
MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

_AUTH_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    reference: str

    @classmethod
    def parse(cls, image: str) -> "ImageReference":
        """
        Parse "registry/repo:tag" or "repo@sha256:..." style references.

        Raises:
            RegistryError: If the reference is empty or malformed
        """
        if not image or any(c.isspace() for c in image):
            raise RegistryError(f"Invalid image reference: {image!r}")

        name, reference = image, "latest"
        if "@" in name:
            name, reference = name.split("@", 1)
        else:
            last = name.rsplit("/", 1)[-1]
            if ":" in last:
                name, reference = name.rsplit(":", 1)

        parts = name.split("/", 1)
        first = parts[0]
        if len(parts) == 2 and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, parts[1]
        else:
            registry, repository = DOCKER_HUB_REGISTRY, name

        if registry in ("docker.io", "index.docker.io"):
            registry = DOCKER_HUB_REGISTRY
        if registry == DOCKER_HUB_REGISTRY and "/" not in repository:
            repository = f"library/{repository}"

        if not repository or not reference or repository != repository.lower():
            raise RegistryError(f"Invalid image reference: {image!r}")

        return cls(registry=registry, repository=repository, reference=reference)

    @property
    def base_url(self) -> str:
        host = self.registry.split(":", 1)[0]
        scheme = "http" if host in ("localhost", "127.0.0.1") else "https"
        return f"{scheme}://{self.registry}/v2/{self.repository}"


@dataclass
class RemoteImage:
    """Layer metadata of an image as stored in its registry."""

    reference: str
    layer_digests: List[str]
    diff_ids: List[str]

    @property
    def layer_count(self) -> int:
        return len(self.layer_digests)

    def diff_id(self, index: int) -> str:
        """
        Uncompressed content digest of the layer at index.

        Raises:
            RegistryError: If the image config does not list that layer
        """
        if len(self.diff_ids) != len(self.layer_digests):
            raise RegistryError(
                f"Failed to get layers for {self.reference}: "
                f"{len(self.layer_digests)} layers but {len(self.diff_ids)} diff ids"
            )
        try:
            return self.diff_ids[index]
        except IndexError:
            raise RegistryError(
                f"{self.reference} has no layer at index {index}"
            ) from None


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response):
        self.status_code = response.status_code
        super().__init__(f"{response.request.url} returned HTTP {response.status_code}")


class RegistryClient:
    """Read-only registry client with timeout and bounded retry."""

    def __init__(
        self,
        timeout: float = REGISTRY_TIMEOUT_SECONDS,
        max_attempts: int = REGISTRY_MAX_ATTEMPTS,
        platform: str = "linux/amd64",
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.platform = platform
        self._transport = transport
        self._sleep = sleep

    def fetch_image(self, image: str) -> RemoteImage:
        """
        Fetch manifest and config metadata for image.

        Raises:
            RegistryError: If the image metadata cannot be fetched
        """
        ref = ImageReference.parse(image)
        log.debug(f"Fetching {ref.repository}:{ref.reference} from {ref.registry}")

        with httpx.Client(
            timeout=self.timeout, transport=self._transport, follow_redirects=True
        ) as client:
            session = _RegistrySession(client, ref, self._request_with_retry)
            manifest = session.get_manifest(ref.reference)

            if manifest.get("mediaType") in INDEX_MEDIA_TYPES or "manifests" in manifest:
                digest = self._select_platform(manifest, image)
                manifest = session.get_manifest(digest)

            layers = manifest.get("layers") or []
            diff_ids: List[str] = []
            if layers:
                config_digest = (manifest.get("config") or {}).get("digest")
                if not config_digest:
                    raise RegistryError(f"Manifest for {image} has no config blob")
                config = session.get_blob_json(config_digest)
                diff_ids = (config.get("rootfs") or {}).get("diff_ids") or []

        return RemoteImage(
            reference=image,
            layer_digests=[layer.get("digest", "") for layer in layers],
            diff_ids=diff_ids,
        )

    def _select_platform(self, index: Dict[str, Any], image: str) -> str:
        os_name, _, arch = self.platform.partition("/")
        for entry in index.get("manifests") or []:
            platform = entry.get("platform") or {}
            if platform.get("os") == os_name and platform.get("architecture") == arch:
                return entry["digest"]
        raise RegistryError(f"No {self.platform} manifest found for {image}")

    def _request_with_retry(self, send: Callable[[], httpx.Response]) -> httpx.Response:
        def attempt() -> httpx.Response:
            response = send()
            if response.status_code in RETRYABLE_STATUS_CODES:
                raise _RetryableStatus(response)
            return response

        try:
            return retry_with_backoff(
                attempt,
                retryable_exceptions=(httpx.TransportError, _RetryableStatus),
                max_attempts=self.max_attempts,
                base_delay=REGISTRY_BACKOFF_BASE,
                sleep=self._sleep,
            )
        except RetryExhaustedError as e:
            raise RegistryError(f"Failed to fetch base image: {e}") from e


class _RegistrySession:
    """One image's requests, carrying a bearer token once obtained."""

    def __init__(self, client: httpx.Client, ref: ImageReference, request_with_retry):
        self.client = client
        self.ref = ref
        self.request_with_retry = request_with_retry
        self.token: Optional[str] = None

    def _headers(self, accept: Optional[str] = None) -> Dict[str, str]:
        headers = {}
        if accept:
            headers["Accept"] = accept
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, url: str, accept: Optional[str] = None) -> httpx.Response:
        response = self.request_with_retry(
            lambda: self.client.get(url, headers=self._headers(accept))
        )
        if response.status_code == 401 and self.token is None:
            self.token = self._authenticate(response)
            response = self.request_with_retry(
                lambda: self.client.get(url, headers=self._headers(accept))
            )

        if response.status_code != 200:
            raise RegistryError(
                f"Failed to fetch base image: GET {url} returned HTTP {response.status_code}"
            )
        return response

    def _authenticate(self, challenge: httpx.Response) -> str:
        header = challenge.headers.get("WWW-Authenticate", "")
        scheme, _, params = header.partition(" ")
        if scheme.lower() != "bearer":
            raise RegistryError(
                f"Unsupported registry auth scheme for {self.ref.registry}: {header!r}"
            )

        values = dict(_AUTH_PARAM_RE.findall(params))
        realm = values.pop("realm", None)
        if not realm:
            raise RegistryError(f"Registry {self.ref.registry} sent no token realm")
        values.setdefault("scope", f"repository:{self.ref.repository}:pull")

        response = self.request_with_retry(
            lambda: self.client.get(realm, params=values)
        )
        if response.status_code != 200:
            raise RegistryError(
                f"Failed to get registry token from {realm}: HTTP {response.status_code}"
            )

        body = self._json(response, realm)
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError(f"Registry token response from {realm} had no token")
        return token

    def get_manifest(self, reference: str) -> Dict[str, Any]:
        url = f"{self.ref.base_url}/manifests/{reference}"
        return self._json(self._get(url, accept=MANIFEST_ACCEPT), url)

    def get_blob_json(self, digest: str) -> Dict[str, Any]:
        url = f"{self.ref.base_url}/blobs/{digest}"
        return self._json(self._get(url), url)

    @staticmethod
    def _json(response: httpx.Response, url: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RegistryError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise RegistryError(f"Unexpected response from {url}")
        return data

"""Tests for the registry client."""

import json

import httpx
import pytest

from modelpack.build.registry import ImageReference, RegistryClient, RemoteImage
from modelpack.exceptions import RegistryError

MANIFEST_TYPE = "application/vnd.oci.image.manifest.v1+json"
INDEX_TYPE = "application/vnd.oci.image.index.v1+json"

IMAGE_MANIFEST = {
    "schemaVersion": 2,
    "mediaType": MANIFEST_TYPE,
    "config": {"digest": "sha256:config"},
    "layers": [{"digest": "sha256:l1"}, {"digest": "sha256:l2"}],
}
IMAGE_CONFIG = {"rootfs": {"type": "layers", "diff_ids": ["sha256:d1", "sha256:d2"]}}


def _json_response(body, status_code=200, media_type="application/json"):
    return httpx.Response(
        status_code, content=json.dumps(body), headers={"Content-Type": media_type}
    )


def _client(handler, **kwargs) -> RegistryClient:
    sleeps = []
    client = RegistryClient(
        transport=httpx.MockTransport(handler), sleep=sleeps.append, **kwargs
    )
    client.sleeps = sleeps
    return client


class TestImageReference:
    """Tests for ImageReference.parse."""

    def test_docker_hub_official_image(self):
        ref = ImageReference.parse("python:3.11")

        assert ref.registry == "registry-1.docker.io"
        assert ref.repository == "library/python"
        assert ref.reference == "3.11"

    def test_default_tag(self):
        assert ImageReference.parse("ubuntu").reference == "latest"

    def test_custom_registry(self):
        ref = ImageReference.parse("r8.im/cog-base:cuda12.1-python3.11")

        assert ref.registry == "r8.im"
        assert ref.repository == "cog-base"
        assert ref.reference == "cuda12.1-python3.11"

    def test_registry_with_port(self):
        ref = ImageReference.parse("localhost:5000/team/model")

        assert ref.registry == "localhost:5000"
        assert ref.repository == "team/model"
        assert ref.reference == "latest"
        assert ref.base_url == "http://localhost:5000/v2/team/model"

    def test_digest_reference(self):
        ref = ImageReference.parse("ghcr.io/org/base@sha256:abc")

        assert ref.registry == "ghcr.io"
        assert ref.repository == "org/base"
        assert ref.reference == "sha256:abc"
        assert ref.base_url == "https://ghcr.io/v2/org/base"

    @pytest.mark.parametrize("image", ["", "has space:tag", "Upper/Case"])
    def test_invalid(self, image):
        with pytest.raises(RegistryError):
            ImageReference.parse(image)


class TestRemoteImage:
    def test_diff_id_mismatch(self):
        image = RemoteImage("x", layer_digests=["a", "b"], diff_ids=["d1"])

        with pytest.raises(RegistryError, match="diff ids"):
            image.diff_id(1)

    def test_diff_id_out_of_range(self):
        image = RemoteImage("x", layer_digests=["a"], diff_ids=["d1"])

        with pytest.raises(RegistryError, match="no layer at index"):
            image.diff_id(3)


class TestFetchImage:
    """Tests for RegistryClient.fetch_image."""

    def test_plain_manifest(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/org/base/manifests/latest":
                assert MANIFEST_TYPE in request.headers["Accept"]
                return _json_response(IMAGE_MANIFEST, media_type=MANIFEST_TYPE)
            if request.url.path == "/v2/org/base/blobs/sha256:config":
                return _json_response(IMAGE_CONFIG)
            return httpx.Response(404)

        image = _client(handler).fetch_image("ghcr.io/org/base")

        assert image.layer_count == 2
        assert image.layer_digests == ["sha256:l1", "sha256:l2"]
        assert image.diff_id(1) == "sha256:d2"

    def test_anonymous_token_auth(self):
        seen_auth = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "auth.example.com":
                assert request.url.params["service"] == "registry.example.com"
                assert request.url.params["scope"] == "repository:org/base:pull"
                return _json_response({"token": "t0ken"})

            seen_auth.append(request.headers.get("Authorization"))
            if request.headers.get("Authorization") != "Bearer t0ken":
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": 'Bearer realm="https://auth.example.com/token",'
                        'service="registry.example.com"'
                    },
                )
            if "/manifests/" in request.url.path:
                return _json_response(IMAGE_MANIFEST, media_type=MANIFEST_TYPE)
            return _json_response(IMAGE_CONFIG)

        image = _client(handler).fetch_image("registry.example.com/org/base:v1")

        assert image.diff_ids == ["sha256:d1", "sha256:d2"]
        assert seen_auth[0] is None
        assert seen_auth[1:] == ["Bearer t0ken", "Bearer t0ken"]

    def test_index_selects_platform(self):
        index = {
            "mediaType": INDEX_TYPE,
            "manifests": [
                {"digest": "sha256:arm", "platform": {"os": "linux", "architecture": "arm64"}},
                {"digest": "sha256:amd", "platform": {"os": "linux", "architecture": "amd64"}},
            ],
        }
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            if request.url.path.endswith("/manifests/v1"):
                return _json_response(index, media_type=INDEX_TYPE)
            if request.url.path.endswith("/manifests/sha256:amd"):
                return _json_response(IMAGE_MANIFEST, media_type=MANIFEST_TYPE)
            if request.url.path.endswith("/blobs/sha256:config"):
                return _json_response(IMAGE_CONFIG)
            return httpx.Response(404)

        image = _client(handler).fetch_image("ghcr.io/org/base:v1")

        assert "/v2/org/base/manifests/sha256:amd" in requested
        assert "/v2/org/base/manifests/sha256:arm" not in requested
        assert image.layer_count == 2

    def test_index_without_platform(self):
        index = {
            "mediaType": INDEX_TYPE,
            "manifests": [
                {"digest": "sha256:arm", "platform": {"os": "linux", "architecture": "arm64"}}
            ],
        }

        def handler(request):
            return _json_response(index, media_type=INDEX_TYPE)

        with pytest.raises(RegistryError, match="linux/amd64"):
            _client(handler).fetch_image("ghcr.io/org/base:v1")

    def test_zero_layers_returns_empty_image(self):
        manifest = {"mediaType": MANIFEST_TYPE, "config": {"digest": "sha256:c"}, "layers": []}

        def handler(request):
            assert "/blobs/" not in request.url.path
            return _json_response(manifest, media_type=MANIFEST_TYPE)

        image = _client(handler).fetch_image("ghcr.io/org/empty")

        assert image.layer_count == 0
        assert image.diff_ids == []

    def test_retries_transient_status(self):
        attempts = {"manifest": 0}

        def handler(request):
            if "/manifests/" in request.url.path:
                attempts["manifest"] += 1
                if attempts["manifest"] < 3:
                    return httpx.Response(503)
                return _json_response(IMAGE_MANIFEST, media_type=MANIFEST_TYPE)
            return _json_response(IMAGE_CONFIG)

        client = _client(handler)
        image = client.fetch_image("ghcr.io/org/base")

        assert attempts["manifest"] == 3
        assert len(client.sleeps) == 2
        assert image.layer_count == 2

    def test_retry_exhaustion_is_registry_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = _client(handler, max_attempts=2)

        with pytest.raises(RegistryError, match="Failed to fetch base image"):
            client.fetch_image("ghcr.io/org/base")
        assert len(calls) == 2

    def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RegistryError):
            _client(handler).fetch_image("ghcr.io/org/base")
        assert len(calls) == 3

    def test_not_found_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(RegistryError, match="HTTP 404"):
            _client(handler).fetch_image("ghcr.io/org/missing")
        assert len(calls) == 1

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(RegistryError, match="Invalid JSON"):
            _client(handler).fetch_image("ghcr.io/org/base")

"""
Test configuration and fixtures for modelpack tests.

Provides shared fixtures for:
- Model source directories
- Fake build engine, generator, introspector and registry
- Environment variable management
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from modelpack.build.labels import LabelAssembler
from modelpack.build.registry import RemoteImage
from modelpack.build.weights import WeightsManifest, find_weights
from modelpack.exceptions import BuildEngineError
from modelpack.models import ProjectConfig

VALID_SCHEMA: Dict[str, Any] = {
    "openapi": "3.0.2",
    "info": {"title": "Model", "version": "0.1.0"},
    "paths": {},
}


class FakeEngine:
    """Build engine that records builds and what .dockerignore held during each."""

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.builds: List[Dict[str, Any]] = []
        self.labeled: List[Dict[str, Any]] = []
        self.images = set()

    def build_image(
        self,
        source_dir,
        instructions,
        image_name,
        secrets,
        no_cache,
        progress_output,
        source_epoch,
        context_dir,
        build_contexts,
    ):
        dockerignore = Path(source_dir) / ".dockerignore"
        self.builds.append(
            {
                "image_name": image_name,
                "instructions": instructions,
                "secrets": secrets,
                "no_cache": no_cache,
                "progress_output": progress_output,
                "source_epoch": source_epoch,
                "context_dir": context_dir,
                "build_contexts": build_contexts,
                "dockerignore": dockerignore.read_text()
                if dockerignore.exists()
                else None,
            }
        )
        if image_name == self.fail_on:
            raise BuildEngineError(f"simulated failure building {image_name}")
        self.images.add(image_name)

    def add_labels_and_schema(self, image_name, labels, schema_path, schema_helper_path):
        self.labeled.append(
            {
                "image_name": image_name,
                "labels": dict(labels),
                "schema_path": schema_path,
                "schema_helper_path": schema_helper_path,
            }
        )

    def image_exists(self, image_name):
        return image_name in self.images

    @property
    def built_image_names(self) -> List[str]:
        return [b["image_name"] for b in self.builds]


class FakeGenerator:
    """Generator returning fixed Dockerfiles and hashing real weight files."""

    def __init__(self, config, source_dir, fast, local_image, managed_base=None):
        self.config = config
        self.source_dir = Path(source_dir)
        self.fast = fast
        self.local_image = local_image
        self.managed_base = managed_base
        self.strip = None
        self.precompile = None
        self.cuda = None
        self.cleaned_up = False

    def build_dir(self):
        return "."

    def build_contexts(self):
        return {"modelpack_wheel": "/tmp/wheels"}

    def cleanup(self):
        self.cleaned_up = True

    def set_strip(self, strip):
        self.strip = strip

    def set_precompile(self, precompile):
        self.precompile = precompile

    def set_use_cuda_base_image(self, value):
        self.cuda = value

    def set_use_managed_base_image(self, value):
        if not value:
            self.managed_base = None

    def is_using_managed_base_image(self):
        return self.managed_base is not None

    def base_image(self):
        return self.managed_base

    def generate_model_base(self):
        return "FROM python:3.11\n"

    def generate_unified(self):
        return "FROM python:3.11\nCOPY . /src\n"

    def generate_split(self, image_name):
        return (
            "FROM scratch\nCOPY model.safetensors /src/\n",
            f"FROM {image_name}-weights\nCOPY . /src\n",
            "model.safetensors\n",
        )

    def generate_weights_manifest(self):
        return WeightsManifest.from_files(self.source_dir, find_weights(self.source_dir))


class FakeIntrospector:
    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.schema = schema if schema is not None else VALID_SCHEMA
        self.schema_calls = []

    def openapi_schema(self, image_name, gpu):
        self.schema_calls.append((image_name, gpu))
        return self.schema

    def pip_freeze(self, image_name, fast):
        return "numpy==1.26.4\ntorch==2.2.0\n"


class FakeFetcher:
    def __init__(self, diff_ids: Optional[List[str]] = None):
        self.diff_ids = ["sha256:aaa", "sha256:bbb", "sha256:ccc"] if diff_ids is None else diff_ids
        self.fetched = []

    def fetch_image(self, image):
        self.fetched.append(image)
        return RemoteImage(
            reference=image,
            layer_digests=[f"sha256:layer{i}" for i in range(len(self.diff_ids))],
            diff_ids=list(self.diff_ids),
        )


@pytest.fixture(autouse=True)
def clear_ci_env(monkeypatch: pytest.MonkeyPatch):
    """Keep CI provenance and epoch overrides out of tests."""
    for name in ("GITHUB_SHA", "GITHUB_REF_NAME", "MODELPACK_SOURCE_DATE_EPOCH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    """Provide a model source directory with a declaration and predictor."""
    (tmp_path / "modelpack.yaml").write_text(
        "build:\n  gpu: false\n  python_version: '3.11'\npredict: predict.py:Predictor\n"
    )
    (tmp_path / "predict.py").write_text("class Predictor:\n    pass\n")
    return tmp_path


@pytest.fixture
def weights_dir(model_dir: Path) -> Path:
    """Model directory containing one weights file."""
    (model_dir / "model.safetensors").write_bytes(b"\x00\x01weights-v1")
    return model_dir


@pytest.fixture
def project_config() -> ProjectConfig:
    return ProjectConfig.model_validate(
        {"build": {"gpu": False, "python_version": "3.11"}, "predict": "predict.py:Predictor"}
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_introspector() -> FakeIntrospector:
    return FakeIntrospector()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def label_assembler(fake_fetcher: FakeFetcher) -> LabelAssembler:
    return LabelAssembler("0.1.0-test", fetcher=fake_fetcher)


@pytest.fixture
def generator_factory():
    """Factory producing FakeGenerators; set .managed_base or .error before building."""
    created: List[FakeGenerator] = []

    def factory(config, source_dir, fast, local_image):
        if factory.error is not None:
            raise factory.error
        generator = FakeGenerator(
            config, source_dir, fast, local_image, managed_base=factory.managed_base
        )
        created.append(generator)
        return generator

    factory.created = created
    factory.managed_base = None
    factory.error = None
    return factory

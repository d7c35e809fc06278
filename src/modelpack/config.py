"""Configuration constants and paths for modelpack builds."""

import os
from pathlib import Path
from typing import NamedTuple

from .exceptions import ConfigurationError

# Private working directory inside the model source tree
MODELPACK_DIR_NAME = ".modelpack"

# Build-exclusion file consumed by docker, and where it is parked mid-build
DOCKERIGNORE_NAME = ".dockerignore"
DOCKERIGNORE_BACKUP_NAME = ".dockerignore.modelpack.bak"

# Label namespace for internal labels
LABEL_NAMESPACE = "run.modelpack."
VERSION_LABEL_KEY = LABEL_NAMESPACE + "version"
CONFIG_LABEL_KEY = LABEL_NAMESPACE + "config"
SCHEMA_LABEL_KEY = LABEL_NAMESPACE + "openapi_schema"
PIP_FREEZE_LABEL_KEY = LABEL_NAMESPACE + "pip_freeze"
HAS_INIT_LABEL_KEY = LABEL_NAMESPACE + "has_init"
BASE_IMAGE_NAME_LABEL_KEY = LABEL_NAMESPACE + "base-image-name"
BASE_IMAGE_LAST_LAYER_SHA_LABEL_KEY = LABEL_NAMESPACE + "base-image-last-layer-sha"
BASE_IMAGE_LAST_LAYER_IDX_LABEL_KEY = LABEL_NAMESPACE + "base-image-last-layer-idx"
OPENCONTAINERS_REVISION_KEY = "org.opencontainers.image.revision"
OPENCONTAINERS_VERSION_KEY = "org.opencontainers.image.version"

# CI-provided provenance overrides
COMMIT_ENV_VAR = "GITHUB_SHA"
REF_NAME_ENV_VAR = "GITHUB_REF_NAME"

# Subprocess and network limits
GIT_TIMEOUT_SECONDS = 3
REGISTRY_TIMEOUT_SECONDS = 30.0
REGISTRY_MAX_ATTEMPTS = 3
REGISTRY_BACKOFF_BASE = 0.5

# Reproducible layer timestamps
DEFAULT_SOURCE_EPOCH = 0
SOURCE_EPOCH_ENV_VAR = "MODELPACK_SOURCE_DATE_EPOCH"

# Build directory used when a raw Dockerfile is supplied
STANDARD_BUILD_DIRECTORY = "."

DEFAULT_CONFIG_FILENAME = "modelpack.yaml"


class BuildPaths(NamedTuple):
    """Transient build-time artifacts, all relative to the source directory."""

    source_dir: Path
    modelpack_dir: Path
    bundled_schema: Path
    bundled_schema_helper: Path
    weights_manifest: Path
    dockerignore: Path
    dockerignore_backup: Path

    def ensure_modelpack_dir(self) -> None:
        """Ensure the .modelpack directory exists."""
        self.modelpack_dir.mkdir(parents=True, exist_ok=True)


def get_paths(source_dir: Path) -> BuildPaths:
    """Get standardized artifact paths for a model source directory."""
    source_dir = Path(source_dir)
    modelpack_dir = source_dir / MODELPACK_DIR_NAME

    return BuildPaths(
        source_dir=source_dir,
        modelpack_dir=modelpack_dir,
        bundled_schema=modelpack_dir / "openapi_schema.json",
        bundled_schema_helper=modelpack_dir / "schema.py",
        weights_manifest=modelpack_dir / "cache" / "weights_manifest.json",
        dockerignore=source_dir / DOCKERIGNORE_NAME,
        dockerignore_backup=source_dir / DOCKERIGNORE_BACKUP_NAME,
    )


def get_source_epoch() -> int:
    """Source epoch passed to every build, overridable from the environment."""
    value = os.environ.get(SOURCE_EPOCH_ENV_VAR)
    if not value:
        return DEFAULT_SOURCE_EPOCH
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{SOURCE_EPOCH_ENV_VAR} must be an integer timestamp, got {value!r}"
        ) from e


def docker_image_name(source_dir: Path) -> str:
    """Default image name derived from the source directory name."""
    name = Path(source_dir).resolve().name.lower()
    cleaned = "".join(c if c.isalnum() or c in "-_." else "-" for c in name)
    cleaned = cleaned.strip("-_.") or "model"
    return f"modelpack-{cleaned}"

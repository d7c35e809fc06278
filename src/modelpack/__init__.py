"""modelpack - build labeled model container images with separately cached weights."""

from importlib import metadata

try:
    __version__ = metadata.version("modelpack")
except metadata.PackageNotFoundError:
    __version__ = "unknown"

# TYPE_CHECKING imports provide full IDE support (autocomplete, type hints)
# while __getattr__ enables lazy loading at runtime for fast CLI startup
from typing import TYPE_CHECKING  # noqa: E402

if TYPE_CHECKING:
    from .build.orchestrator import ModelImageBuilder, build
    from .models import BuildRequest, BuildResult, ProjectConfig


def __getattr__(name):
    """Lazily import core modules only when accessed."""
    if name in ("ModelImageBuilder", "build"):
        from .build import orchestrator

        return getattr(orchestrator, name)
    elif name in ("BuildRequest", "BuildResult", "ProjectConfig"):
        from . import models

        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "BuildRequest",
    "BuildResult",
    "ModelImageBuilder",
    "ProjectConfig",
    "build",
]

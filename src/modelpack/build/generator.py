"""
Instruction generator interface.

Turning a ProjectConfig into Dockerfile text is done by a pluggable generator.
The orchestrator only depends on the protocol below and on a factory that
creates one generator per build.
"""

import importlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..exceptions import ConfigurationError
from ..models import ProjectConfig
from .weights import WeightsManifest

log = logging.getLogger(__name__)


class InstructionGenerator(Protocol):
    def build_dir(self) -> str: ...

    def build_contexts(self) -> Dict[str, str]: ...

    def cleanup(self) -> None: ...

    def set_strip(self, strip: bool) -> None: ...

    def set_precompile(self, precompile: bool) -> None: ...

    def set_use_cuda_base_image(self, value: str) -> None: ...

    def set_use_managed_base_image(self, value: bool) -> None: ...

    def is_using_managed_base_image(self) -> bool: ...

    def base_image(self) -> str: ...

    def generate_model_base(self) -> str: ...

    def generate_unified(self) -> str: ...

    def generate_split(self, image_name: str) -> Tuple[str, str, str]:
        """Return (weights Dockerfile, runner Dockerfile, runner .dockerignore body)."""
        ...

    def generate_weights_manifest(self) -> WeightsManifest: ...


GeneratorFactory = Callable[[ProjectConfig, Path, bool, bool], InstructionGenerator]
"""Called as factory(config, source_dir, fast, local_image)."""


@dataclass
class GeneratedBuildArtifacts:
    """Everything the build phases need from instruction generation."""

    context_dir: str
    build_contexts: Dict[str, str] = field(default_factory=dict)
    unified: Optional[str] = None
    weights: Optional[str] = None
    runner: Optional[str] = None
    runner_dockerignore: Optional[str] = None

    @property
    def is_split(self) -> bool:
        return self.runner is not None


def load_generator_factory(target: str) -> GeneratorFactory:
    """
    Import a generator factory from a "module:attribute" string.

    Raises:
        ConfigurationError: If the target cannot be imported or is not callable
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Generator must be given as 'module:factory', got {target!r}"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Failed to import generator module {module_name}: {e}"
        ) from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"{target} is not a callable generator factory")

    log.debug(f"Loaded generator factory {target}")
    return factory

"""Data models shared across the build pipeline."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ConfigurationError


class BuildSettings(BaseModel):
    """The build section of a model declaration."""

    model_config = ConfigDict(extra="allow")

    gpu: bool = False
    python_version: Optional[str] = None
    cuda: Optional[str] = None
    python_packages: Optional[List[str]] = None
    system_packages: Optional[List[str]] = None


class ProjectConfig(BaseModel):
    """Model/environment declaration, serialized verbatim into the config label."""

    model_config = ConfigDict(extra="allow")

    build: BuildSettings = Field(default_factory=BuildSettings)
    predict: Optional[str] = None
    image: Optional[str] = None

    def to_label_json(self) -> str:
        return self.model_dump_json(exclude_none=True).strip()

    @classmethod
    def from_file(cls, path: Path) -> "ProjectConfig":
        """
        Load a model declaration from a YAML file.

        Raises:
            ConfigurationError: If the file is missing or not a valid declaration
        """
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found at: {path}") from e
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error parsing {path.name}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path.name} must contain a mapping")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {path.name}: {e}") from e


@dataclass(frozen=True)
class BuildRequest:
    """Immutable input to a single build."""

    source_dir: Path
    image_name: str
    secrets: List[str] = field(default_factory=list)
    no_cache: bool = False
    separate_weights: bool = False
    use_cuda_base_image: str = "auto"
    use_managed_base_image: Optional[bool] = None
    progress_output: str = "auto"
    schema_file: Optional[Path] = None
    dockerfile_file: Optional[Path] = None
    strip: bool = False
    precompile: bool = False
    fast: bool = False
    annotations: Dict[str, str] = field(default_factory=dict)
    local_image: bool = False

    @property
    def weights_image_name(self) -> str:
        return self.image_name + "-weights"


@dataclass(frozen=True)
class BaseImageLineage:
    """Layer lineage of a managed base image."""

    image: str
    layer_count: int
    last_layer_digest: str

    @property
    def last_layer_index(self) -> int:
        return self.layer_count - 1


@dataclass
class BuildResult:
    """Outcome of a successful build."""

    image_name: str
    labels: Dict[str, str]
    built_images: List[str]
    weights_cache_hit: bool = False
    base_image: Optional[BaseImageLineage] = None

"""
Model image build orchestrator.

Main class that coordinates the entire model image build:
1. Pre-flight checks on the source directory
2. Dockerfile generation
3. Either one unified image build, or a weights image build (skipped when the
   weights are unchanged) followed by a runner image build
4. Schema resolution and validation
5. Label assembly and attachment
"""

import contextlib
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .. import __version__
from ..config import (
    DEFAULT_CONFIG_FILENAME,
    STANDARD_BUILD_DIRECTORY,
    BuildPaths,
    docker_image_name,
    get_paths,
    get_source_epoch,
)
from ..exceptions import (
    BuildEngineError,
    CachePersistenceError,
    ConfigurationError,
    GenerationError,
    ModelpackError,
)
from ..models import BuildRequest, BuildResult, ProjectConfig
from .engine import BuildEngine, DockerEngine
from .generator import GeneratedBuildArtifacts, GeneratorFactory, InstructionGenerator
from .ignore_file import DOCKERIGNORE_HEADER, IgnoreFileState, check_compatible_dockerignore
from .introspect import DockerIntrospector, SchemaIntrospector
from .labels import LabelAssembler
from .schema import remove_bundled_schema, resolve_schema, store_bundled_schema, validate_schema
from .weights import WeightsManifest

log = logging.getLogger(__name__)


class BuildPhase(str, Enum):
    INIT = "init"
    INSTRUCTIONS_GENERATED = "instructions_generated"
    UNIFIED_BUILD = "unified_build"
    WEIGHTS_BUILD = "weights_build"
    RUNNER_BUILD = "runner_build"
    SCHEMA_VALIDATED = "schema_validated"
    LABELED = "labeled"
    DONE = "done"
    FAILED = "failed"


class ModelImageBuilder:
    """
    Orchestrate a model image build.

    Collaborators are injected so each can be replaced: the generator factory
    turns a ProjectConfig into Dockerfiles, the engine builds images, the
    introspector runs the built image, and the label assembler talks to the
    base image registry. Builds of the same source directory must not run
    concurrently; the .dockerignore and weights manifest are not locked.
    """

    def __init__(
        self,
        generator_factory: Optional[GeneratorFactory] = None,
        engine: Optional[BuildEngine] = None,
        introspector: Optional[SchemaIntrospector] = None,
        label_assembler: Optional[LabelAssembler] = None,
    ):
        self.generator_factory = generator_factory
        self.engine = engine or DockerEngine()
        self.introspector = introspector or DockerIntrospector()
        self.label_assembler = label_assembler or LabelAssembler(__version__)
        self.phase = BuildPhase.INIT
        self.phase_history: List[BuildPhase] = []

    def _enter(self, phase: BuildPhase) -> None:
        log.debug(f"Build phase: {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.phase_history.append(phase)

    def build(self, config: ProjectConfig, request: BuildRequest) -> BuildResult:
        """
        Build, validate and label a model image.

        Args:
            config: Model declaration
            request: Build options for this invocation

        Returns:
            BuildResult with the final labels and the images built

        Raises:
            ModelpackError: If any stage fails; the original cause is chained
        """
        self.phase_history = []
        self._enter(BuildPhase.INIT)
        try:
            result = self._build(config, request)
        except Exception:
            self._enter(BuildPhase.FAILED)
            raise
        self._enter(BuildPhase.DONE)
        return result

    def _build(self, config: ProjectConfig, request: BuildRequest) -> BuildResult:
        source_dir = Path(request.source_dir)
        paths = get_paths(source_dir)

        log.info(
            f"Building Docker image from environment in {DEFAULT_CONFIG_FILENAME} "
            f"as {request.image_name}..."
        )
        if request.fast:
            log.info("Fast build enabled.")

        remove_bundled_schema(paths)
        check_compatible_dockerignore(source_dir)
        source_epoch = get_source_epoch()

        built_images: List[str] = []
        weights_cache_hit = False
        base_image: Optional[str] = None

        if request.dockerfile_file is not None:
            instructions = self._read_dockerfile(request.dockerfile_file)
            self._enter(BuildPhase.INSTRUCTIONS_GENERATED)
            self._enter(BuildPhase.UNIFIED_BUILD)
            self._run_build(
                request,
                instructions,
                request.image_name,
                source_epoch,
                STANDARD_BUILD_DIRECTORY,
                None,
                "Failed to build Docker image",
            )
            built_images.append(request.image_name)
        else:
            with self._open_generator(config, request) as generator:
                self._configure_generator(generator, request)

                if generator.is_using_managed_base_image():
                    base_image = self._call(
                        "Failed to get base image name", generator.base_image
                    )

                if request.separate_weights:
                    artifacts = self._generate_split(generator, request)
                    self._enter(BuildPhase.INSTRUCTIONS_GENERATED)
                    weights_cache_hit = self._build_split(
                        generator, request, artifacts, paths, source_epoch, built_images
                    )
                else:
                    artifacts = self._generate_unified(generator)
                    self._enter(BuildPhase.INSTRUCTIONS_GENERATED)
                    self._enter(BuildPhase.UNIFIED_BUILD)
                    self._run_build(
                        request,
                        artifacts.unified,
                        request.image_name,
                        source_epoch,
                        artifacts.context_dir,
                        artifacts.build_contexts,
                        "Failed to build Docker image",
                    )
                    built_images.append(request.image_name)

        schema_json = resolve_schema(
            request.image_name, request.schema_file, self.introspector, config.build.gpu
        )
        store_bundled_schema(paths, schema_json)
        validate_schema(schema_json, base_uri=source_dir.resolve().as_uri() + "/")
        self._enter(BuildPhase.SCHEMA_VALIDATED)

        log.info("Adding labels to image...")
        try:
            pip_freeze = self.introspector.pip_freeze(request.image_name, request.fast)
        except ModelpackError as e:
            raise BuildEngineError(
                f"Failed to generate pip freeze from image: {e}"
            ) from e

        labels, lineage = self.label_assembler.assemble(
            config,
            schema_json,
            pip_freeze,
            source_dir,
            base_image=base_image,
            annotations=request.annotations,
        )

        try:
            self.engine.add_labels_and_schema(
                request.image_name,
                labels,
                paths.bundled_schema,
                paths.bundled_schema_helper,
            )
        except ModelpackError as e:
            raise BuildEngineError(f"Failed to add labels to image: {e}") from e
        self._enter(BuildPhase.LABELED)

        return BuildResult(
            image_name=request.image_name,
            labels=labels,
            built_images=built_images,
            weights_cache_hit=weights_cache_hit,
            base_image=lineage,
        )

    def build_base(
        self,
        config: ProjectConfig,
        source_dir: Path,
        use_cuda_base_image: str = "auto",
        use_managed_base_image: Optional[bool] = None,
        progress_output: str = "auto",
    ) -> str:
        """
        Build only the model's base environment image, for interactive runs.

        Returns:
            Name of the built image
        """
        source_dir = Path(source_dir)
        image_name = docker_image_name(source_dir) + "-base"
        request = BuildRequest(
            source_dir=source_dir,
            image_name=image_name,
            use_cuda_base_image=use_cuda_base_image,
            use_managed_base_image=use_managed_base_image,
            progress_output=progress_output,
        )

        log.info(f"Building Docker image from environment in {DEFAULT_CONFIG_FILENAME}...")
        with self._open_generator(config, request) as generator:
            generator.set_use_cuda_base_image(use_cuda_base_image)
            if use_managed_base_image is not None:
                generator.set_use_managed_base_image(use_managed_base_image)

            context_dir = self._call("Failed to resolve build directory", generator.build_dir)
            build_contexts = self._call(
                "Failed to resolve build contexts", generator.build_contexts
            )
            instructions = self._call(
                "Failed to generate Dockerfile", generator.generate_model_base
            )
            self._run_build(
                request,
                instructions,
                image_name,
                get_source_epoch(),
                context_dir,
                build_contexts,
                "Failed to build Docker image",
            )
        return image_name

    @contextlib.contextmanager
    def _open_generator(
        self, config: ProjectConfig, request: BuildRequest
    ) -> Iterator[InstructionGenerator]:
        if self.generator_factory is None:
            raise ConfigurationError(
                "No Dockerfile generator configured; pass a generator or a Dockerfile"
            )

        generator = self._call(
            "Error creating Dockerfile generator",
            self.generator_factory,
            config,
            Path(request.source_dir),
            request.fast,
            request.local_image,
        )
        try:
            yield generator
        finally:
            try:
                generator.cleanup()
            except Exception as e:
                log.warning(f"Error cleaning up Dockerfile generator: {e}")

    def _configure_generator(
        self, generator: InstructionGenerator, request: BuildRequest
    ) -> None:
        generator.set_strip(request.strip)
        generator.set_precompile(request.precompile)
        generator.set_use_cuda_base_image(request.use_cuda_base_image)
        if request.use_managed_base_image is not None:
            generator.set_use_managed_base_image(request.use_managed_base_image)

    def _generate_unified(self, generator: InstructionGenerator) -> GeneratedBuildArtifacts:
        context_dir, build_contexts = self._resolve_contexts(generator)
        return GeneratedBuildArtifacts(
            context_dir=context_dir,
            build_contexts=build_contexts,
            unified=self._call("Failed to generate Dockerfile", generator.generate_unified),
        )

    def _generate_split(
        self, generator: InstructionGenerator, request: BuildRequest
    ) -> GeneratedBuildArtifacts:
        context_dir, build_contexts = self._resolve_contexts(generator)
        weights, runner, dockerignore = self._call(
            "Failed to generate Dockerfile", generator.generate_split, request.image_name
        )
        return GeneratedBuildArtifacts(
            context_dir=context_dir,
            build_contexts=build_contexts,
            weights=weights,
            runner=runner,
            runner_dockerignore=dockerignore,
        )

    def _resolve_contexts(
        self, generator: InstructionGenerator
    ) -> Tuple[str, Dict[str, str]]:
        context_dir = self._call("Failed to resolve build directory", generator.build_dir)
        build_contexts = self._call(
            "Failed to resolve build contexts", generator.build_contexts
        )
        return context_dir, dict(build_contexts or {})

    def _build_split(
        self,
        generator: InstructionGenerator,
        request: BuildRequest,
        artifacts: GeneratedBuildArtifacts,
        paths: BuildPaths,
        source_epoch: int,
        built_images: List[str],
    ) -> bool:
        """Build weights (when changed) and runner images. Returns True on a cache hit."""
        weights_manifest = self._call(
            "Failed to generate weights manifest", generator.generate_weights_manifest
        )
        cached_manifest = WeightsManifest.load(paths.weights_manifest)
        changed = not weights_manifest.equal(cached_manifest)

        if not changed and not self.engine.image_exists(request.weights_image_name):
            log.info(
                f"Weights unchanged but {request.weights_image_name} is missing, rebuilding..."
            )
            changed = True

        with IgnoreFileState(paths.source_dir) as dockerignore:
            if changed:
                self._enter(BuildPhase.WEIGHTS_BUILD)
                dockerignore.write(DOCKERIGNORE_HEADER)
                self._run_build(
                    request,
                    artifacts.weights,
                    request.weights_image_name,
                    source_epoch,
                    artifacts.context_dir,
                    artifacts.build_contexts,
                    "Failed to build model weights Docker image",
                )
                built_images.append(request.weights_image_name)
                try:
                    weights_manifest.save(paths.weights_manifest)
                except CachePersistenceError as e:
                    raise CachePersistenceError(f"Failed to save weights hash: {e}") from e
            else:
                log.info("Weights unchanged, skip rebuilding and use cached image...")

            self._enter(BuildPhase.RUNNER_BUILD)
            dockerignore.write(artifacts.runner_dockerignore or "")
            self._run_build(
                request,
                artifacts.runner,
                request.image_name,
                source_epoch,
                artifacts.context_dir,
                artifacts.build_contexts,
                "Failed to build runner Docker image",
            )
            built_images.append(request.image_name)

        return not changed

    def _run_build(
        self,
        request: BuildRequest,
        instructions: str,
        image_name: str,
        source_epoch: int,
        context_dir: str,
        build_contexts: Optional[Dict[str, str]],
        failure_message: str,
    ) -> None:
        try:
            self.engine.build_image(
                Path(request.source_dir),
                instructions,
                image_name,
                list(request.secrets),
                request.no_cache,
                request.progress_output,
                source_epoch,
                context_dir,
                build_contexts,
            )
        except ModelpackError as e:
            raise BuildEngineError(f"{failure_message}: {e}") from e

    @staticmethod
    def _read_dockerfile(dockerfile_file: Path) -> str:
        try:
            return Path(dockerfile_file).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read Dockerfile at {dockerfile_file}: {e}"
            ) from e

    @staticmethod
    def _call(failure_message: str, func, *args):
        """Call a generator method, wrapping its failures as GenerationError."""
        try:
            return func(*args)
        except Exception as e:
            raise GenerationError(f"{failure_message}: {e}") from e


def build(
    config: ProjectConfig,
    request: BuildRequest,
    generator_factory: Optional[GeneratorFactory] = None,
) -> BuildResult:
    """
    Convenience function to build a model image with the default Docker engine.

    Example:
        >>> request = BuildRequest(source_dir=Path("."), image_name="my-model")
        >>> build(config, request, generator_factory=MyGenerator)
    """
    builder = ModelImageBuilder(generator_factory=generator_factory)
    return builder.build(config, request)

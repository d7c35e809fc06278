"""modelpack build command - Build a labeled model image."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ...build.generator import load_generator_factory
from ...build.orchestrator import ModelImageBuilder
from ...config import DEFAULT_CONFIG_FILENAME, docker_image_name
from ...exceptions import ModelpackError
from ...models import BuildRequest, BuildResult, ProjectConfig

console = Console()
log = logging.getLogger(__name__)


def parse_annotations(values: List[str]) -> Dict[str, str]:
    """
    Parse repeated KEY=VALUE options.

    Raises:
        typer.BadParameter: If an entry has no "=" or an empty key
    """
    annotations = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(
                f"Annotation must be KEY=VALUE, got {value!r}", param_hint="--annotation"
            )
        annotations[key.strip()] = val
    return annotations


def build_command(
    tag: Optional[str],
    secrets: List[str],
    no_cache: bool,
    separate_weights: bool,
    use_cuda_base_image: str,
    use_managed_base_image: Optional[bool],
    progress: str,
    openapi_schema: Optional[Path],
    dockerfile: Optional[Path],
    strip: bool,
    precompile: bool,
    fast: bool,
    annotations: List[str],
    local_image: bool,
    generator: Optional[str],
    config_file: Optional[Path],
):
    """
    Build a model image from the current directory.

    Exits with status 1 on any build failure.
    """
    source_dir = Path.cwd()
    image_name = tag or docker_image_name(source_dir)
    parsed_annotations = parse_annotations(annotations)

    try:
        config = ProjectConfig.from_file(config_file or source_dir / DEFAULT_CONFIG_FILENAME)
        factory = load_generator_factory(generator) if generator else None

        request = BuildRequest(
            source_dir=source_dir,
            image_name=image_name,
            secrets=list(secrets),
            no_cache=no_cache,
            separate_weights=separate_weights,
            use_cuda_base_image=use_cuda_base_image,
            use_managed_base_image=use_managed_base_image,
            progress_output=progress,
            schema_file=openapi_schema,
            dockerfile_file=dockerfile,
            strip=strip,
            precompile=precompile,
            fast=fast,
            annotations=parsed_annotations,
            local_image=local_image,
        )

        result = ModelImageBuilder(generator_factory=factory).build(config, request)

    except KeyboardInterrupt:
        console.print("\n[yellow]Build cancelled by user[/yellow]")
        raise typer.Exit(1)
    except ModelpackError as e:
        log.debug("Build failed", exc_info=True)
        console.print(f"\n[red]Build failed:[/red] {e}")
        raise typer.Exit(1)

    _display_build_summary(result)


def build_base_command(
    use_cuda_base_image: str,
    use_managed_base_image: Optional[bool],
    progress: str,
    generator: str,
    config_file: Optional[Path],
):
    """Build only the base environment image."""
    source_dir = Path.cwd()
    try:
        config = ProjectConfig.from_file(config_file or source_dir / DEFAULT_CONFIG_FILENAME)
        builder = ModelImageBuilder(generator_factory=load_generator_factory(generator))
        image_name = builder.build_base(
            config,
            source_dir,
            use_cuda_base_image=use_cuda_base_image,
            use_managed_base_image=use_managed_base_image,
            progress_output=progress,
        )
    except ModelpackError as e:
        console.print(f"\n[red]Build failed:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Built base image [bold]{image_name}[/bold]")


def _display_build_summary(result: BuildResult):
    """Display build summary."""
    summary = Table(show_header=False, box=None)
    summary.add_column("Item", style="bold")
    summary.add_column("Value", style="cyan")

    summary.add_row("Image", result.image_name)
    summary.add_row("Images built", ", ".join(result.built_images))
    if result.weights_cache_hit:
        summary.add_row("Weights", "reused cached image")
    if result.base_image is not None:
        summary.add_row("Base image", result.base_image.image)
    summary.add_row("Labels", str(len(result.labels)))

    console.print("\n")
    console.print(summary)

    console.print(
        Panel(
            f"[bold]{result.image_name}[/bold] built successfully!",
            title="✓ Build Complete",
            expand=False,
            border_style="green",
        )
    )

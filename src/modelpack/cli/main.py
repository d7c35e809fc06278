"""Main CLI entry point for modelpack."""

from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from .. import __version__
from ..logger import setup_logging

console = Console()

# command: modelpack
app = typer.Typer(
    name="modelpack",
    help="Build labeled model container images with separately cached weights",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.command("build")
def build_cmd(
    tag: Optional[str] = typer.Option(
        None, "--tag", "-t", help="Image name (default: modelpack-<directory>)"
    ),
    secrets: List[str] = typer.Option(
        [], "--secret", help="Secret for the build engine, e.g. id=token,src=./token"
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not use build cache"),
    separate_weights: bool = typer.Option(
        False, "--separate-weights", help="Cache model weights in a separate image"
    ),
    use_cuda_base_image: str = typer.Option(
        "auto", "--use-cuda-base-image", help="Use a CUDA base image: auto, true or false"
    ),
    use_managed_base_image: Optional[bool] = typer.Option(
        None,
        "--use-managed-base-image/--no-managed-base-image",
        help="Build on top of the managed base image",
    ),
    progress: str = typer.Option(
        "auto", "--progress", help="Build progress output: auto, plain or tty"
    ),
    openapi_schema: Optional[Path] = typer.Option(
        None, "--openapi-schema", help="Use this OpenAPI schema instead of introspecting"
    ),
    dockerfile: Optional[Path] = typer.Option(
        None, "--dockerfile", help="Build from this Dockerfile instead of generating one"
    ),
    strip: bool = typer.Option(False, "--strip", help="Strip shared libraries"),
    precompile: bool = typer.Option(
        False, "--precompile", help="Precompile Python bytecode"
    ),
    fast: bool = typer.Option(False, "--fast", help="Use the fast build path"),
    annotations: List[str] = typer.Option(
        [], "--annotation", help="Extra image label as KEY=VALUE"
    ),
    local_image: bool = typer.Option(
        False, "--local-image", help="Generate for a local-only image"
    ),
    generator: Optional[str] = typer.Option(
        None, "--generator", help="Dockerfile generator factory as module:attribute"
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-f", help="Model declaration (default: modelpack.yaml)"
    ),
):
    """Build a labeled model image from the current directory."""
    from .commands.build import build_command

    return build_command(
        tag,
        secrets,
        no_cache,
        separate_weights,
        use_cuda_base_image,
        use_managed_base_image,
        progress,
        openapi_schema,
        dockerfile,
        strip,
        precompile,
        fast,
        annotations,
        local_image,
        generator,
        config_file,
    )


@app.command("build-base")
def build_base_cmd(
    generator: str = typer.Option(
        ..., "--generator", help="Dockerfile generator factory as module:attribute"
    ),
    use_cuda_base_image: str = typer.Option("auto", "--use-cuda-base-image"),
    use_managed_base_image: Optional[bool] = typer.Option(
        None, "--use-managed-base-image/--no-managed-base-image"
    ),
    progress: str = typer.Option("auto", "--progress"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-f"),
):
    """Build only the model's base environment image."""
    from .commands.build import build_base_command

    return build_base_command(
        use_cuda_base_image, use_managed_base_image, progress, generator, config_file
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """modelpack - build labeled model container images."""
    if version:
        console.print(f"modelpack v{__version__}")
        raise typer.Exit()

    load_dotenv()
    setup_logging("DEBUG" if debug else "INFO")

    if ctx.invoked_subcommand is None:
        console.print(
            Panel(
                "[bold blue]modelpack[/bold blue]\n\n"
                "Build labeled model images with separately cached weights.\n\n"
                "Use [bold]modelpack --help[/bold] to see available commands.",
                title="Welcome",
                expand=False,
            )
        )


if __name__ == "__main__":
    app()

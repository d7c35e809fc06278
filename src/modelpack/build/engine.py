"""
Docker image building operations.

BuildEngine is the seam between the orchestrator and whatever actually builds
images. DockerEngine drives the docker CLI.
"""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from ..exceptions import BuildEngineError

log = logging.getLogger(__name__)


class BuildEngine(Protocol):
    def build_image(
        self,
        source_dir: Path,
        instructions: str,
        image_name: str,
        secrets: List[str],
        no_cache: bool,
        progress_output: str,
        source_epoch: int,
        context_dir: str,
        build_contexts: Optional[Dict[str, str]],
    ) -> None: ...

    def add_labels_and_schema(
        self,
        image_name: str,
        labels: Dict[str, str],
        schema_path: Path,
        schema_helper_path: Path,
    ) -> None: ...

    def image_exists(self, image_name: str) -> bool: ...


class DockerEngine:
    """Build Docker images with `docker buildx build`."""

    def __init__(self, docker_binary: str = "docker"):
        self.docker_binary = docker_binary

    def _build_args(
        self,
        image_name: str,
        secrets: List[str],
        no_cache: bool,
        progress_output: str,
        source_epoch: int,
        build_contexts: Optional[Dict[str, str]],
    ) -> List[str]:
        args = [
            self.docker_binary,
            "buildx",
            "build",
            "--file",
            "-",
            "--tag",
            image_name,
            "--load",
            "--progress",
            progress_output,
        ]

        if source_epoch >= 0:
            args += ["--build-arg", f"SOURCE_DATE_EPOCH={source_epoch}"]
        for secret in secrets:
            args += ["--secret", secret]
        for name, path in sorted((build_contexts or {}).items()):
            args += ["--build-context", f"{name}={path}"]
        if no_cache:
            args.append("--no-cache")

        return args

    def build_image(
        self,
        source_dir: Path,
        instructions: str,
        image_name: str,
        secrets: List[str],
        no_cache: bool,
        progress_output: str,
        source_epoch: int,
        context_dir: str,
        build_contexts: Optional[Dict[str, str]],
    ) -> None:
        """
        Build an image from Dockerfile text.

        Raises:
            BuildEngineError: If docker exits non-zero or cannot be started
        """
        args = self._build_args(
            image_name, secrets, no_cache, progress_output, source_epoch, build_contexts
        )
        args.append(context_dir)

        log.info(f"Building Docker image: {image_name}")
        log.debug(f"   Command: {' '.join(args)}")
        log.debug(f"   Source dir: {source_dir}")

        self._run(args, source_dir, instructions, image_name)
        log.info(f"Image built successfully: {image_name}")

    def add_labels_and_schema(
        self,
        image_name: str,
        labels: Dict[str, str],
        schema_path: Path,
        schema_helper_path: Path,
    ) -> None:
        """
        Rebuild image_name on top of itself with labels and the bundled schema files.

        Raises:
            BuildEngineError: If the amend build fails
        """
        schema_path = Path(schema_path)
        schema_helper_path = Path(schema_helper_path)

        lines = [f"FROM {image_name}"]
        with tempfile.TemporaryDirectory(prefix="modelpack-labels-") as tmpdir:
            context = Path(tmpdir)
            target_dir = f"/src/{schema_path.parent.name}/"
            for path in (schema_path, schema_helper_path):
                if path.exists():
                    (context / path.name).write_bytes(path.read_bytes())
                    lines.append(f"COPY {path.name} {target_dir}")

            args = [self.docker_binary, "build", "--file", "-", "--tag", image_name]
            for key, value in labels.items():
                args += ["--label", f"{key}={value}"]
            args.append(".")

            log.debug(f"Adding {len(labels)} labels to {image_name}")
            self._run(args, context, "\n".join(lines) + "\n", image_name)

    def image_exists(self, image_name: str) -> bool:
        """Check if image exists in the local Docker store."""
        try:
            result = subprocess.run(
                [self.docker_binary, "image", "inspect", image_name],
                capture_output=True,
                text=True,
                check=False,
            )
        except (subprocess.SubprocessError, FileNotFoundError):
            log.debug(f"Failed to check local image: {image_name}")
            return False
        exists = result.returncode == 0
        log.debug(f"Local image check for {image_name}: {exists}")
        return exists

    def _run(self, args: List[str], cwd: Path, stdin: str, image_name: str) -> None:
        try:
            subprocess.run(
                args,
                cwd=cwd,
                input=stdin,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise BuildEngineError(
                f"docker build for {image_name} exited with status {e.returncode}"
            ) from e
        except FileNotFoundError as e:
            raise BuildEngineError(
                f"{self.docker_binary} not found, is Docker installed?"
            ) from e

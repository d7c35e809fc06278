"""Introspection of a built image by running it."""

import json
import logging
import subprocess
from typing import Any, Dict, List, Protocol

from ..exceptions import BuildEngineError, SchemaError

log = logging.getLogger(__name__)

SCHEMA_COMMAND = ["python", "-m", "modelpack_runtime.openapi_schema"]
PIP_FREEZE_COMMAND = ["python", "-m", "pip", "freeze"]
UV_FREEZE_COMMAND = ["uv", "pip", "freeze"]

INTROSPECTION_TIMEOUT_SECONDS = 300


class SchemaIntrospector(Protocol):
    def openapi_schema(self, image_name: str, gpu: bool) -> Dict[str, Any]: ...

    def pip_freeze(self, image_name: str, fast: bool) -> str: ...


class DockerIntrospector:
    """Run commands inside a built image with `docker run --rm`."""

    def __init__(self, docker_binary: str = "docker"):
        self.docker_binary = docker_binary

    def _run(self, image_name: str, command: List[str], gpu: bool = False) -> str:
        args = [self.docker_binary, "run", "--rm"]
        if gpu:
            args += ["--gpus", "all"]
        args += [image_name, *command]

        log.debug(f"Running in {image_name}: {' '.join(command)}")
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=INTROSPECTION_TIMEOUT_SECONDS,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise BuildEngineError(
                f"{' '.join(command)} failed in {image_name}:\n{e.stderr}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BuildEngineError(
                f"{' '.join(command)} timed out in {image_name} "
                f"after {INTROSPECTION_TIMEOUT_SECONDS}s"
            ) from e
        except FileNotFoundError as e:
            raise BuildEngineError(f"{self.docker_binary} not found") from e

        return result.stdout

    def openapi_schema(self, image_name: str, gpu: bool) -> Dict[str, Any]:
        """
        Ask the image for its OpenAPI schema.

        Raises:
            BuildEngineError: If the image cannot be run
            SchemaError: If the command does not print a JSON object
        """
        output = self._run(image_name, SCHEMA_COMMAND, gpu=gpu)
        try:
            schema = json.loads(output)
        except json.JSONDecodeError as e:
            raise SchemaError(
                f"Failed to parse type signature from {image_name}: {e}\n\n{output}"
            ) from e
        if not isinstance(schema, dict):
            raise SchemaError(f"Type signature from {image_name} is not a JSON object")
        return schema

    def pip_freeze(self, image_name: str, fast: bool) -> str:
        command = UV_FREEZE_COMMAND if fast else PIP_FREEZE_COMMAND
        return self._run(image_name, command)

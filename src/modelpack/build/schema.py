"""
Model schema resolution and validation.

The schema either comes from a user-supplied file or from running the built
image. Either way it is written to .modelpack/openapi_schema.json and then
validated as an OpenAPI document.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema.exceptions import ValidationError
from openapi_spec_validator import validate
from openapi_spec_validator.validation.exceptions import ValidatorDetectError
from referencing.exceptions import Unresolvable

from ..config import BuildPaths
from ..exceptions import ConfigurationError, ModelpackError, SchemaError
from .introspect import SchemaIntrospector

log = logging.getLogger(__name__)


def remove_bundled_schema(paths: BuildPaths) -> None:
    """Delete schema artifacts left over from a previous build."""
    for path in (paths.bundled_schema, paths.bundled_schema_helper):
        if path.exists():
            log.debug(f"Removing stale {path}")
        path.unlink(missing_ok=True)


def resolve_schema(
    image_name: str,
    schema_file: Optional[Path],
    introspector: SchemaIntrospector,
    gpu: bool,
) -> bytes:
    """
    Obtain the raw schema document.

    Raises:
        ConfigurationError: If schema_file cannot be read
        SchemaError: If introspection fails or the result cannot be serialized
    """
    if schema_file is not None:
        log.info(f"Validating model schema from {schema_file}...")
        try:
            return Path(schema_file).read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Failed to read schema file: {e}") from e

    log.info("Validating model schema...")
    try:
        schema = introspector.openapi_schema(image_name, gpu)
    except ModelpackError as e:
        raise SchemaError(f"Failed to get type signature: {e}") from e

    try:
        return json.dumps(schema).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SchemaError(f"Failed to convert type signature to JSON: {e}") from e


def store_bundled_schema(paths: BuildPaths, schema_json: bytes) -> None:
    try:
        paths.ensure_modelpack_dir()
        paths.bundled_schema.write_bytes(schema_json)
    except OSError as e:
        raise SchemaError(
            f"failed to store bundled schema file {paths.bundled_schema}: {e}"
        ) from e


def validate_schema(schema_json: bytes, base_uri: str = "") -> Dict[str, Any]:
    """
    Parse and validate an OpenAPI document.

    Args:
        schema_json: Raw document bytes
        base_uri: Base for resolving external references

    Returns:
        The parsed document

    Raises:
        SchemaError: With the validator message and the full document
    """
    try:
        text = schema_json.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SchemaError(
            f"Model schema is not valid UTF-8: {e}\n\n"
            f"{schema_json.decode('utf-8', errors='replace')}"
        ) from e

    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Failed to load model schema JSON: {e}") from e

    if not isinstance(document, dict) or "openapi" not in document:
        raise SchemaError(
            f"Model schema is invalid: missing 'openapi' version field\n\n{text}"
        )

    try:
        validate(document, base_uri=base_uri)
    except ValidationError as e:
        raise SchemaError(f"Model schema is invalid: {e.message}\n\n{text}") from e
    except ValidatorDetectError as e:
        raise SchemaError(f"Model schema is invalid: {e}\n\n{text}") from e
    except Unresolvable as e:
        raise SchemaError(
            f"Model schema is invalid: unresolvable reference {e}\n\n{text}"
        ) from e

    return document

"""
Image label assembly.

Labels are built in a fixed order so that later entries win: internal
metadata, base image lineage, git provenance, then user annotations.
"""

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Tuple

from ..config import (
    BASE_IMAGE_LAST_LAYER_IDX_LABEL_KEY,
    BASE_IMAGE_LAST_LAYER_SHA_LABEL_KEY,
    BASE_IMAGE_NAME_LABEL_KEY,
    CONFIG_LABEL_KEY,
    HAS_INIT_LABEL_KEY,
    OPENCONTAINERS_REVISION_KEY,
    OPENCONTAINERS_VERSION_KEY,
    PIP_FREEZE_LABEL_KEY,
    SCHEMA_LABEL_KEY,
    VERSION_LABEL_KEY,
)
from ..exceptions import RegistryError
from ..models import BaseImageLineage, ProjectConfig
from .provenance import LookupStatus, ProvenanceLookup, resolve_commit, resolve_tag
from .registry import RegistryClient, RemoteImage

log = logging.getLogger(__name__)


class ImageFetcher(Protocol):
    def fetch_image(self, image: str) -> RemoteImage: ...


def fetch_base_image_lineage(fetcher: ImageFetcher, image: str) -> BaseImageLineage:
    """
    Look up the last layer of a managed base image.

    Raises:
        RegistryError: If the image cannot be fetched or has no layers
    """
    try:
        remote_image = fetcher.fetch_image(image)
    except RegistryError as e:
        raise RegistryError(f"Failed to fetch base image {image}: {e}") from e

    if remote_image.layer_count == 0:
        raise RegistryError(f"Base image has no layers: {image}")

    last_index = remote_image.layer_count - 1
    digest = remote_image.diff_id(last_index)
    log.debug(f"Last layer of the base image: {digest}")

    return BaseImageLineage(
        image=image, layer_count=remote_image.layer_count, last_layer_digest=digest
    )


def _log_missing(what: str, lookup: ProvenanceLookup) -> None:
    if lookup.status == LookupStatus.ERROR:
        log.info(f"Unable to determine Git {what}: {lookup.detail}")
    else:
        log.info(f"Unable to determine Git {what}")
        log.debug(lookup.detail)


class LabelAssembler:
    """Build the final label set attached to an image."""

    def __init__(self, version: str, fetcher: Optional[ImageFetcher] = None):
        self.version = version
        self.fetcher = fetcher or RegistryClient()

    def assemble(
        self,
        config: ProjectConfig,
        schema_json: bytes,
        pip_freeze: str,
        source_dir: Path,
        base_image: Optional[str] = None,
        annotations: Optional[Mapping[str, str]] = None,
    ) -> Tuple[Dict[str, str], Optional[BaseImageLineage]]:
        """
        Assemble labels.

        Args:
            config: Model declaration, serialized into the config label
            schema_json: Validated schema document
            pip_freeze: Dependency freeze output from the image
            source_dir: Directory used for git provenance lookups
            base_image: Managed base image name, if one was used
            annotations: User labels, applied last

        Returns:
            Tuple of (labels, base image lineage or None)

        Raises:
            RegistryError: If the managed base image cannot be inspected
        """
        labels: Dict[str, str] = {
            VERSION_LABEL_KEY: self.version,
            CONFIG_LABEL_KEY: config.to_label_json(),
            SCHEMA_LABEL_KEY: schema_json.decode("utf-8"),
            PIP_FREEZE_LABEL_KEY: pip_freeze,
            # Marks the image as having an init entrypoint
            HAS_INIT_LABEL_KEY: "true",
        }

        lineage = None
        if base_image:
            labels[BASE_IMAGE_NAME_LABEL_KEY] = base_image
            lineage = fetch_base_image_lineage(self.fetcher, base_image)
            labels[BASE_IMAGE_LAST_LAYER_SHA_LABEL_KEY] = lineage.last_layer_digest
            labels[BASE_IMAGE_LAST_LAYER_IDX_LABEL_KEY] = str(lineage.last_layer_index)

        commit = resolve_commit(source_dir)
        if commit.found:
            labels[OPENCONTAINERS_REVISION_KEY] = commit.value
        else:
            _log_missing("commit", commit)

        tag = resolve_tag(source_dir)
        if tag.found:
            labels[OPENCONTAINERS_VERSION_KEY] = tag.value
        else:
            _log_missing("tag", tag)

        for key, value in (annotations or {}).items():
            labels[key] = value

        return labels, lineage

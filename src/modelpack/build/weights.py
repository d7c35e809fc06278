"""
Weights manifest for split weights builds.

A manifest maps each weight file (relative to the source directory) to the
sha256 of its contents. The manifest from the last successful weights image
build is persisted, and the weights image is rebuilt only when it changes.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pathspec

from ..exceptions import CachePersistenceError

log = logging.getLogger(__name__)

MANIFEST_VERSION = 1

WEIGHTS_EXTENSIONS = {
    ".bin",
    ".ckpt",
    ".gguf",
    ".h5",
    ".joblib",
    ".msgpack",
    ".npz",
    ".onnx",
    ".pb",
    ".pkl",
    ".pt",
    ".pth",
    ".safetensors",
    ".tflite",
}

WEIGHTS_SIZE_THRESHOLD = 10 * 1024 * 1024  # 10MB
HASH_CHUNK_SIZE = 1024 * 1024

_ALWAYS_SKIP_DIRS = {".git", ".modelpack", "__pycache__", ".venv", "venv"}


def hash_file(path: Path) -> str:
    """Return the sha256 hex digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class WeightsManifest:
    """Content-addressed inventory of weight files."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})

    @classmethod
    def from_files(cls, root: Path, paths: Iterable[Path]) -> "WeightsManifest":
        """
        Hash weight files into a manifest.

        Args:
            root: Source directory the manifest paths are relative to
            paths: Weight files, absolute or relative to root
        """
        root = Path(root)
        files = {}
        for path in paths:
            path = Path(path)
            full_path = path if path.is_absolute() else root / path
            rel_path = full_path.relative_to(root).as_posix()
            files[rel_path] = hash_file(full_path)
        return cls(files)

    @classmethod
    def load(cls, path: Path) -> Optional["WeightsManifest"]:
        """
        Load a persisted manifest.

        Returns:
            The manifest, or None if it does not exist or cannot be read
        """
        path = Path(path)
        if not path.exists():
            log.debug(f"No cached weights manifest at {path}")
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.warning(f"Ignoring unreadable weights manifest {path}: {e}")
            return None

        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, dict):
            log.warning(f"Ignoring malformed weights manifest {path}")
            return None

        return cls({str(k): str(v) for k, v in files.items()})

    def save(self, path: Path) -> None:
        """
        Persist the manifest.

        Raises:
            CachePersistenceError: If the file cannot be written
        """
        path = Path(path)
        payload = {"version": MANIFEST_VERSION, "files": dict(sorted(self.files.items()))}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise CachePersistenceError(
                f"Failed to save weights manifest to {path}: {e}"
            ) from e
        log.debug(f"Saved weights manifest with {len(self.files)} files to {path}")

    def equal(self, other: Optional["WeightsManifest"]) -> bool:
        if other is None:
            return False
        return self.files == other.files

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WeightsManifest):
            return NotImplemented
        return self.equal(other)

    def __len__(self) -> int:
        return len(self.files)

    def __repr__(self) -> str:
        return f"WeightsManifest({len(self.files)} files)"


def is_weights_file(path: Path) -> bool:
    if path.suffix.lower() in WEIGHTS_EXTENSIONS:
        return True
    return path.stat().st_size >= WEIGHTS_SIZE_THRESHOLD


def find_weights(
    root: Path, ignore_spec: Optional[pathspec.PathSpec] = None
) -> List[Path]:
    """
    Collect weight files under root, sorted by relative path.

    Args:
        root: Source directory to scan
        ignore_spec: Optional ignore rules; matching files are skipped

    Returns:
        Paths relative to root
    """
    root = Path(root)
    found = []

    for path in sorted(root.rglob("*")):
        rel_path = path.relative_to(root)
        if _ALWAYS_SKIP_DIRS.intersection(rel_path.parts):
            continue
        if not path.is_file():
            continue
        if ignore_spec is not None and ignore_spec.match_file(rel_path.as_posix()):
            log.debug(f"Ignoring: {rel_path}")
            continue
        if is_weights_file(path):
            found.append(rel_path)

    return found

"""
.dockerignore handling for split weights builds.

The weights and runner images need different build-exclusion rules, so the
user's .dockerignore is parked in a backup file while each phase writes its
own. IgnoreFileState is a context manager: entering backs the file up, and
exiting always restores it, whether the phases in between succeeded or not.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import pathspec

from ..config import MODELPACK_DIR_NAME, BuildPaths, get_paths
from ..exceptions import ConfigurationError

log = logging.getLogger(__name__)

# Exclusions applied while building the weights image
DOCKERIGNORE_HEADER = """# generated by modelpack
__pycache__
*.pyc
*.pyo
*.pyd
.Python
env
pip-log.txt
pip-delete-this-directory.txt
.tox
.coverage
.coverage.*
.cache
nosetests.xml
coverage.xml
*.cover
*.log
.git
.mypy_cache
.pytest_cache
.hypothesis
"""


class IgnoreState(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"


def parse_ignore_lines(content: str) -> list[str]:
    """Return the pattern lines of a .dockerignore body."""
    patterns = []
    for line in content.splitlines():
        line = line.strip()
        # Skip empty lines and comments
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def load_dockerignore_spec(source_dir: Path) -> Optional[pathspec.PathSpec]:
    """
    Load .dockerignore patterns from source_dir.

    Returns:
        PathSpec for the file, or None when there is no .dockerignore
    """
    dockerignore = get_paths(source_dir).dockerignore
    if not dockerignore.exists():
        return None

    patterns = parse_ignore_lines(dockerignore.read_text(encoding="utf-8"))
    log.debug(f"Loaded {len(patterns)} patterns from {dockerignore.name}")
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def check_compatible_dockerignore(source_dir: Path) -> None:
    """
    Fail if .dockerignore would hide the .modelpack working directory.

    Raises:
        ConfigurationError: If .modelpack is matched by the ignore rules
    """
    spec = load_dockerignore_spec(source_dir)
    if spec is None:
        return

    if spec.match_file(MODELPACK_DIR_NAME) or spec.match_file(
        f"{MODELPACK_DIR_NAME}/openapi_schema.json"
    ):
        raise ConfigurationError(
            f"The {MODELPACK_DIR_NAME} tmp path cannot be ignored by docker in .dockerignore."
        )


class IgnoreFileState:
    """Back up, rewrite and restore the .dockerignore of one source directory."""

    def __init__(self, source_dir: Path):
        self.paths: BuildPaths = get_paths(source_dir)
        self.state: Optional[IgnoreState] = None

    @property
    def has_backup(self) -> bool:
        return self.state == IgnoreState.PRESENT

    def backup(self) -> IgnoreState:
        """Move an existing .dockerignore aside. No-op when there is none."""
        if self.state is not None:
            return self.state

        active = self.paths.dockerignore
        backup = self.paths.dockerignore_backup

        if backup.exists() and not active.exists():
            log.warning(
                f"Found {backup.name} left by an interrupted build, restoring it"
            )
            os.replace(backup, active)

        if not active.exists():
            self.state = IgnoreState.ABSENT
            log.debug(f"No {active.name} to back up")
            return self.state

        os.replace(active, backup)
        self.state = IgnoreState.PRESENT
        log.debug(f"Backed up {active.name} to {backup.name}")
        return self.state

    def write(self, contents: str) -> None:
        """Write contents as the active .dockerignore, keeping the user's rules first."""
        if self.state is None:
            raise RuntimeError("write() called before backup()")

        if self.has_backup:
            existing = self.paths.dockerignore_backup.read_text(encoding="utf-8")
            contents = existing + "\n" + contents

        self.paths.dockerignore.write_text(contents, encoding="utf-8")

    def restore(self) -> None:
        """Remove the generated .dockerignore and put the original back."""
        if self.state is None:
            return

        self.paths.dockerignore.unlink(missing_ok=True)
        if self.has_backup:
            os.replace(self.paths.dockerignore_backup, self.paths.dockerignore)
            log.debug(f"Restored {self.paths.dockerignore.name}")

        self.state = None

    def __enter__(self) -> "IgnoreFileState":
        self.backup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.restore()
        except OSError as e:
            if exc is None:
                raise
            # Keep the build error as the primary failure
            log.error(f"Failed to restore {self.paths.dockerignore.name}: {e}")

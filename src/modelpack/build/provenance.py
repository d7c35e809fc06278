"""
Git provenance lookups for image labels.

Commit and tag resolution is best-effort: CI-provided environment values win,
otherwise git is queried with a short timeout. Failures never abort a build.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..config import COMMIT_ENV_VAR, GIT_TIMEOUT_SECONDS, REF_NAME_ENV_VAR

log = logging.getLogger(__name__)


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_APPLICABLE = "not_applicable"
    ERROR = "error"


@dataclass
class ProvenanceLookup:
    """Outcome of a single provenance lookup."""

    status: LookupStatus
    value: Optional[str] = None
    source: Optional[str] = None
    detail: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND and bool(self.value)


def _run_git(directory: Path, args: List[str]) -> str:
    result = subprocess.run(
        ["git", "-C", str(directory), *args],
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT_SECONDS,
        check=True,
    )
    return result.stdout.strip()


def is_git_work_tree(directory: Path) -> bool:
    """Check whether directory is inside a git work tree. Any failure means no."""
    try:
        return _run_git(directory, ["rev-parse", "--is-inside-work-tree"]) == "true"
    except (subprocess.SubprocessError, OSError) as e:
        log.debug(f"git work tree check failed for {directory}: {e}")
        return False


def _resolve(directory: Path, env_var: str, git_args: List[str]) -> ProvenanceLookup:
    env_value = os.environ.get(env_var)
    if env_value:
        return ProvenanceLookup(LookupStatus.FOUND, env_value, source=env_var)

    if not is_git_work_tree(directory):
        return ProvenanceLookup(
            LookupStatus.NOT_APPLICABLE,
            detail=f"{directory} is not a git work tree and {env_var} is unset",
        )

    try:
        value = _run_git(directory, git_args)
    except subprocess.TimeoutExpired:
        return ProvenanceLookup(
            LookupStatus.ERROR,
            detail=f"git {' '.join(git_args)} timed out after {GIT_TIMEOUT_SECONDS}s",
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        return ProvenanceLookup(
            LookupStatus.ERROR,
            detail=f"git {' '.join(git_args)} exited with {e.returncode}: {stderr}",
        )
    except OSError as e:
        return ProvenanceLookup(LookupStatus.ERROR, detail=str(e))

    if not value:
        return ProvenanceLookup(
            LookupStatus.ERROR, detail=f"git {' '.join(git_args)} returned nothing"
        )
    return ProvenanceLookup(LookupStatus.FOUND, value, source="git")


def resolve_commit(directory: Path) -> ProvenanceLookup:
    """Resolve the current commit SHA for directory."""
    return _resolve(Path(directory), COMMIT_ENV_VAR, ["rev-parse", "HEAD"])


def resolve_tag(directory: Path) -> ProvenanceLookup:
    """Resolve the nearest descriptive tag for directory."""
    return _resolve(
        Path(directory), REF_NAME_ENV_VAR, ["describe", "--tags", "--dirty"]
    )

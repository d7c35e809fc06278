"""Tests for the test suite's own collection settings."""

from fnmatch import fnmatch
from pathlib import Path


def test_build_package_tests_not_excluded(request):
    build_tests = Path(__file__).parent / "build"
    patterns = request.config.getini("norecursedirs")

    assert build_tests.is_dir()
    assert not any(fnmatch(build_tests.name, pattern) for pattern in patterns)

"""
Pytest fixtures for export engine tests.

Everything the tests draw or encode is generated in the test itself; no
binary fixtures are checked in.

CI/CD Note:
Tests that spawn a real ffmpeg are marked with @pytest.mark.requires_ffmpeg and are
skipped when no ffmpeg binary is on PATH.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from export_engine.config import Settings


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring an ffmpeg binary (skipped when missing)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip @requires_ffmpeg tests when no ffmpeg binary is on PATH."""
    if shutil.which("ffmpeg") is not None:
        return
    skip = pytest.mark.skip(reason="ffmpeg not available")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="export_engine_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_output_dir: Path) -> Settings:
    """Settings with job directories under the temporary directory."""
    return Settings(
        export_temp_dir=str(temp_output_dir / "jobs"),
        export_max_concurrent_jobs=2,
        export_renderer_pool_size=2,
    )


@pytest.fixture
def make_timeline():
    """Build a timeline payload from track dicts (camelCase, as editors send it)."""
    from export_engine.schemas.timeline import parse_timeline

    def _make(tracks: list[dict], duration: float = 5.0, width: int = 64, height: int = 36):
        return parse_timeline(
            {
                "duration": duration,
                "dimension": {"width": width, "height": height},
                "tracks": tracks,
            }
        )

    return _make

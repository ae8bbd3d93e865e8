"""Shared pytest fixtures for aPix tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from apix.api.main import create_app
from apix.core.config import ApixConfig
from apix.core.layout import StorageLayout, ensure_storage_layout

# Smallest valid PNG (1x1, transparent).
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ApixConfig:
    """Create a test configuration rooted in the temporary directory."""
    return ApixConfig(
        _env_file=None,
        storage_root=str(temp_dir / "storage"),
        server_port=3001,
        gemini_api_key="",
    )


@pytest.fixture
def layout(test_config: ApixConfig) -> StorageLayout:
    """Storage layout for the test configuration, without any directories."""
    return StorageLayout.from_config(test_config)


@pytest.fixture
def ready_layout(layout: StorageLayout) -> StorageLayout:
    """Storage layout with the category tree already created."""
    ensure_storage_layout(layout)
    return layout


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def test_client(test_config: ApixConfig) -> Generator[TestClient, None, None]:
    """TestClient for an app bound to the temporary storage root.

    Entering the client runs the lifespan, so the storage tree exists and the
    legacy migration has run before the first request.
    """
    app = create_app(test_config)
    with TestClient(app) as client:
        yield client

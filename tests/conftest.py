"""Shared pytest fixtures."""

import os
from pathlib import Path

import pytest

from imagestore import create_app
from imagestore.config import Config


class ManualClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_file(directory: Path, name: str, mtime_s: float, data: bytes = b"x") -> Path:
    path = directory / name
    path.write_bytes(data)
    os.utime(path, (mtime_s, mtime_s))
    return path


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    path = tmp_path / "images"
    path.mkdir()
    return path


@pytest.fixture
def config(image_dir: Path) -> Config:
    return Config(image_dir=image_dir, cache_ttl_ms=5000)


@pytest.fixture
def app(config: Config, clock: ManualClock):
    app = create_app(config, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()

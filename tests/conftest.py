"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from isitup.health.models import Site
from isitup.health.store import SQLiteStore

from fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStore:
    s = SQLiteStore(db_path=tmp_path / "test_isitup.db")
    yield s
    s.close()


@pytest.fixture
def https_site() -> Site:
    return Site(id="s1", name="Example", url="https://example.com/", user_id="u1")


@pytest.fixture
def http_site() -> Site:
    return Site(id="s2", name="Plain", url="http://plain.example.com/status", user_id="u1")

"""Shared fixtures: a fixed clock and a scheduler over an in-memory store."""

from __future__ import annotations

import os

import pytest

# 既定ストアをメモリに固定し、テストが .data/ 配下へ SQLite を作らないようにする
os.environ.setdefault("STORE_BACKEND", "memory")

from srs_engine.clock import FixedClock  # noqa: E402
from srs_engine.config import SchedulerConfig  # noqa: E402
from srs_engine.scheduler import Scheduler  # noqa: E402
from srs_engine.store.memory import InMemoryCardStore  # noqa: E402

from tests.builders import START  # noqa: E402


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture()
def store() -> InMemoryCardStore:
    return InMemoryCardStore()


@pytest.fixture()
def config() -> SchedulerConfig:
    return SchedulerConfig()


@pytest.fixture()
def scheduler(store: InMemoryCardStore, config: SchedulerConfig, clock: FixedClock) -> Scheduler:
    return Scheduler(store, config, clock)

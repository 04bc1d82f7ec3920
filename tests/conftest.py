"""Shared fixtures: a tmp_path-backed store, a controllable clock and a fake
completion provider that streams canned fragments."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Optional, Sequence

import pytest
import pytest_asyncio

from promptloom.catalog import Catalog
from promptloom.config import ConfigManager
from promptloom.crypto import SecretBox
from promptloom.llm.base import CompletionProvider
from promptloom.session.dialogs import DialogService
from promptloom.session.manager import DialogSessionManager
from promptloom.settings import ProviderSettings
from promptloom.storage.store import PersistentStore


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeProvider(CompletionProvider):
    """Streams the given fragments, optionally failing after ``fail_after``."""

    name = "fake"

    def __init__(
        self,
        fragments: Sequence[str] = ("Hello", ", ", "world"),
        fail_after: Optional[int] = None,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.calls: list[dict] = []
        self.closed = False

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncGenerator[str, None]:
        self.calls.append({"messages": messages, "model": model, **kwargs})
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise ConnectionError("connection reset by peer")
                await asyncio.sleep(0)
                yield fragment
        finally:
            self.closed = True


async def fragments_of(*parts: str) -> AsyncGenerator[str, None]:
    for part in parts:
        yield part


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest_asyncio.fixture
async def store(data_dir: Path):
    s = PersistentStore(data_dir)
    await s.open()
    yield s
    s.close()


@pytest.fixture
def catalog(store: PersistentStore) -> Catalog:
    return Catalog(store)


@pytest.fixture
def dialogs(store: PersistentStore, clock: FakeClock) -> DialogService:
    return DialogService(store, clock=clock)


@pytest.fixture
def session(dialogs: DialogService, clock: FakeClock) -> DialogSessionManager:
    return DialogSessionManager(dialogs, clock=clock)


@pytest.fixture
def settings(store: PersistentStore, data_dir: Path) -> ProviderSettings:
    return ProviderSettings(store, ConfigManager(data_dir), SecretBox(data_dir))

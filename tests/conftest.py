"""Shared fixtures for firestoreorm tests."""

import pytest
from pydantic import BaseModel, Field

from firestoreorm.adapters.store import MemoryStore
from firestoreorm.config import RepositorySettings, StoreSettings
from firestoreorm.logger import logger
from firestoreorm.repository import Repository


class Address(BaseModel):
    street: str = ""
    city: str
    zip: str | None = None


class User(BaseModel):
    name: str = Field(min_length=1)
    email: str
    age: int = Field(default=0, ge=0)
    status: str = "active"
    address: Address | None = None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "quick: mark test as fast-running")


@pytest.fixture
def store_settings() -> StoreSettings:
    return StoreSettings(transaction_max_attempts=3)


@pytest.fixture
def repository_settings() -> RepositorySettings:
    return RepositorySettings()


@pytest.fixture
def store(store_settings: StoreSettings) -> MemoryStore:
    return MemoryStore(store_settings)


@pytest.fixture
def repo(store: MemoryStore, repository_settings: RepositorySettings) -> Repository:
    """Schemaless repository over the ``items`` collection."""
    return Repository(store, "items", settings=repository_settings)


@pytest.fixture
def users(store: MemoryStore, repository_settings: RepositorySettings) -> Repository:
    return Repository.with_schema(store, "users", User, settings=repository_settings)


@pytest.fixture
def log_messages():
    """Collect loguru records emitted during the test."""
    messages: list = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(handler_id)

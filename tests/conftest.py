"""
Pytest configuration and fixtures for reactor tests.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from reactor import EntityStore, Reactor, SubscriberRegistry
from reactor.mailers import Mailer
from reactor.queue import InMemoryJobQueue
from shared.config.settings import Settings
from tests.models import Base


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture
def test_settings(monkeypatch):
    """Settings isolated from the developer's environment."""
    monkeypatch.delenv("REACTOR_QUEUE", raising=False)
    return Settings(
        environment="test",
        default_queue="default",
        reactor_queue="",
        reactor_test_mode=False,
    )


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def registry():
    """A fresh subscriber registry per test."""
    return SubscriberRegistry(test_mode=False)


@pytest.fixture(scope="function")
def scoped(test_settings):
    """
    Thread-local session registry over a fresh schema.

    Each test gets its own sessionmaker, so lifecycle hooks installed by one
    test never leak into another.
    """
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False)
    registry = scoped_session(factory)
    try:
        yield registry
    finally:
        registry.remove()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def bus(test_settings, job_queue, registry, scoped):
    """Event bus wired to the in-memory queue and the test database."""
    reactor = Reactor(
        settings=test_settings,
        queue=job_queue,
        store=EntityStore(scoped, Base),
        registry=registry,
    )
    reactor.watch_sessions(scoped.session_factory)
    return reactor


@pytest.fixture
def db_session(bus, scoped):
    """Session whose commits publish through ``bus``."""
    return scoped()


@pytest.fixture(autouse=True)
def clear_mail_deliveries():
    Mailer.delivery_method.clear()
    yield
    Mailer.delivery_method.clear()

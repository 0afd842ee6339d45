import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker

import support_chat.models  # noqa: F401
from support_chat.database import Base, build_engine
from support_chat.services.change_feed import ChangeFeed, bind_feed
from support_chat.services.roles import Actor, SenderRole


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several sessions and threads see the same data."""
    engine = build_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def feed():
    feed = ChangeFeed()
    yield feed
    feed.shutdown()


@pytest.fixture
def session_factory(engine, feed):
    maker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def factory():
        session = maker()
        bind_feed(session, feed)
        return session

    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def customer():
    return Actor(id="c1", name="Ana", role=SenderRole.CUSTOMER, email="a@x.com")


@pytest.fixture
def other_customer():
    return Actor(id="c2", name="Ben", role=SenderRole.CUSTOMER, email="b@x.com")


@pytest.fixture
def staff():
    return Actor(id="s1", name="Sam", role=SenderRole.STAFF, email="sam@hotbox.test")


@pytest.fixture
def other_staff():
    return Actor(id="s2", name="Kim", role=SenderRole.STAFF, email="kim@hotbox.test")

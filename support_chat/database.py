from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from support_chat.config import settings
from support_chat.errors import ConnectivityError


def build_engine(database_url: str):
    """Create an engine; SQLite URLs get a thread-shareable connection."""
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(database_url, **options)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def translate_store_errors():
    """Surface transport failures as ConnectivityError; constraint errors pass through."""
    try:
        yield
    except OperationalError as e:
        raise ConnectivityError(f"Store unreachable: {e.orig}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise ConnectivityError(f"Store connection lost: {e.orig}") from e
        raise


def init_db(bind=None) -> None:
    """Create missing tables. Models must be imported first."""
    import support_chat.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

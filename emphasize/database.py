from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

# Base class for all ORM models
Base = declarative_base()


def make_engine(db_url: str) -> Engine:
    """
    Create the engine for the Publication Store.

    For file-backed SQLite the parent directory is created on demand, and
    check_same_thread is disabled because store calls run on worker threads.
    """
    url = make_url(db_url)
    connect_args = {}

    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(db_url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Each store call gets its own short-lived session from this factory."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine: Engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    import emphasize.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

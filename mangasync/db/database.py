"""
Database connection and session management.
"""

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from mangasync.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/mangasync.db"


def get_database_url() -> str:
    """Get database URL from environment or use default."""
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def ensure_data_directory(db_url: str) -> None:
    """Ensure the data directory exists for SQLite database."""
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        db_path = db_url.replace("sqlite:///", "")
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)


class Database:
    """
    Owns the engine and a thread-local session factory.

    Worker threads of a sync phase each get their own session from the
    scoped factory, and every unit of work is a short transaction.
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or get_database_url()
        ensure_data_directory(self.url)

        self.engine: Engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False} if self.url.startswith("sqlite") else {},
            echo=echo,
        )

        self.SessionLocal = scoped_session(
            sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)
        )

    def create_all(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for one transaction."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self.SessionLocal.remove()

    def close(self) -> None:
        """Close the database connection."""
        self.SessionLocal.remove()
        self.engine.dispose()


def init_db(url: Optional[str] = None) -> Database:
    """Create the database and its tables."""
    database = Database(url)
    database.create_all()
    return database

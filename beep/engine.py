"""
Beep Engine Configuration.

============================================================
PURPOSE
============================================================
Builds the SQLAlchemy engine, session factory and Repo from
environment configuration.

Environment (a .env file is loaded if present):
- BEEP_DATABASE_URL: preferred database URL
- DATABASE_URL: fallback database URL
- BEEP_DATABASE_ECHO: "1"/"true" to log SQL statements

Without either URL an in-memory SQLite database is used.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from beep.repo import Repo

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("BEEP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        logger.warning(f"BEEP_DATABASE_URL not set, using default: {DEFAULT_DATABASE_URL}")
        url = DEFAULT_DATABASE_URL
    return url


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """
    Engine and pool settings.

    Pool sizing is ignored for SQLite.
    """

    url: str = field(default_factory=get_database_url)
    """SQLAlchemy database URL."""

    echo: bool = field(default_factory=lambda: _env_flag("BEEP_DATABASE_ECHO"))
    """Log SQL statements."""

    pool_size: int = 5
    """Number of connections to keep in pool."""

    max_overflow: int = 10
    """Max connections beyond pool_size."""

    pool_timeout: int = 30
    """Seconds to wait for an available connection."""

    pool_recycle: int = 1800
    """Recycle connections after N seconds."""


def create_database_engine(config: Optional[EngineConfig] = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    In-memory SQLite databases share one connection (StaticPool)
    so every session sees the same data.
    """
    config = config or EngineConfig()
    url = make_url(config.url)

    logger.info(f"Creating database engine for: {config.url.split('@')[-1]}")

    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(config.url, echo=config.echo, **kwargs)
    else:
        engine = create_engine(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            echo=config.echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with the settings Repo relies on."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def create_repo(
    config: Optional[EngineConfig] = None,
    name: str = "repo",
    engine: Optional[Engine] = None
) -> Repo:
    """
    Build a Repo from configuration.

    Pass an existing engine to share it between repos.
    """
    engine = engine or create_database_engine(config)
    return Repo(create_session_factory(engine), name=name)

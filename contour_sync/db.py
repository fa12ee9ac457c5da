"""Database engine for a sync run."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url


def create_db_engine(database_url: str, *, workers: int = 1) -> Engine:
    """Create the engine a sync run reads and writes through.

    PostgreSQL URLs are routed to the psycopg 3 driver and the pool keeps one
    connection per chunk worker plus one for the orchestrator's reads. SQLite
    connections may be used from the worker threads of a deferred run.
    """
    url = make_url(database_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")

    if url.get_backend_name() == "sqlite":
        return create_engine(
            url, connect_args={"check_same_thread": False, "timeout": 30}
        )
    return create_engine(url, pool_size=max(1, workers) + 1, pool_pre_ping=True)

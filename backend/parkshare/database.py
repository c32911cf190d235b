from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings
from .infrastructure.tenancy import TenantSession

# InnoDB lock wait timeout, deadlock victim.
_MYSQL_CONTENTION_CODES = {1205, 1213}


def create_engine_for(url: str, *, echo: bool = False, lock_wait_timeout: int = 5) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": lock_wait_timeout})
        _use_immediate_transactions(engine)
        return engine

    engine = create_async_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=3600)
    if engine.dialect.name == "mysql":
        _set_lock_wait_timeout(engine, lock_wait_timeout)
    return engine


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    # SQLite takes the write lock at BEGIN IMMEDIATE, so a read-check-insert
    # sequence cannot interleave with another writer.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _set_lock_wait_timeout(engine: AsyncEngine, seconds: int) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}")
        cursor.close()


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
        sync_session_class=TenantSession,
    )


def is_contention_error(exc: OperationalError) -> bool:
    orig = exc.orig
    args = getattr(orig, "args", ())
    if args and args[0] in _MYSQL_CONTENTION_CODES:
        return True
    return "database is locked" in str(orig)


settings = get_settings()

engine = create_engine_for(
    settings.database_url,
    echo=settings.echo_sql,
    lock_wait_timeout=settings.lock_wait_timeout_seconds,
)

async_session = make_sessionmaker(engine)

import os
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import load_environment

load_environment()


def _normalize_scheme(url: str) -> str:
    # Hosted Postgres may provide postgres://, SQLAlchemy expects postgresql://
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _sanitize_postgres_url(url: str) -> str:
    """Percent-encode user/password to avoid DSN parsing issues with special chars."""
    parsed = urlsplit(url)
    if not parsed.scheme.startswith("postgresql"):
        return url
    if "@" not in parsed.netloc:
        return url

    userinfo, hostinfo = parsed.netloc.rsplit("@", 1)
    has_password = ":" in userinfo
    username, password = userinfo.split(":", 1) if has_password else (userinfo, "")

    safe_username = quote(unquote(username), safe="")
    safe_password = quote(unquote(password), safe="")
    safe_userinfo = f"{safe_username}:{safe_password}" if has_password else safe_username
    safe_netloc = f"{safe_userinfo}@{hostinfo}"
    return urlunsplit((parsed.scheme, safe_netloc, parsed.path, parsed.query, parsed.fragment))


def resolve_database_url(url: str | None = None) -> str:
    if url is None:
        url = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    return _sanitize_postgres_url(_normalize_scheme(url))


def _is_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url in ("sqlite://", "sqlite:///")


def _lock_on_begin(engine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write; taking the write lock up front
    makes concurrent inserts run their overlap re-check one after another.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str):
    engine_kwargs = {}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(url):
            # one shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **engine_kwargs)
    if url.startswith("sqlite") and not _is_memory_sqlite(url):
        _lock_on_begin(engine)
    return engine


DATABASE_URL = resolve_database_url()

engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

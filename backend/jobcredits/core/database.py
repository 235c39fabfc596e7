from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from jobcredits.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url

SQLITE_BUSY_TIMEOUT_S = 30


def _enable_sqlite_write_locks(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, so two sessions can both read
    # the same unused credit before either writes. Taking the write lock at
    # BEGIN serialises them the way row locks do on PostgreSQL.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str) -> Engine:
    connect_args: dict = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_S}
    else:
        backend = make_url(url).get_backend_name()
        if backend == "postgresql" and settings.is_production:
            connect_args = {"sslmode": "require"}

    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if url.startswith("sqlite"):
        _enable_sqlite_write_locks(engine)
    return engine


engine = create_db_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

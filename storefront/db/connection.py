from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine,async_sessionmaker,AsyncSession
from sqlalchemy.pool import NullPool
from storefront.config.settings import config_settings
from storefront.db.utils import _normalize_db_url

DATABASE_URL=_normalize_db_url(config_settings.DATABASE_URL)


def _enable_sqlite_immediate_transactions(engine):
    # pysqlite defers BEGIN until the first write; take the write lock up front instead so
    # concurrent transactions serialize like row locks would on postgres.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, poolclass=NullPool, connect_args={"timeout": 30})
        _enable_sqlite_immediate_transactions(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


async_engine=build_engine(DATABASE_URL, echo=config_settings.DB_ECHO)

async_session=async_sessionmaker(bind=async_engine,class_=AsyncSession,expire_on_commit=False)

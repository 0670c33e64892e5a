# priority_service/core/database.py
from typing import Optional, Tuple

import structlog
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from priority_service.core.config import Settings, get_settings
from priority_service.models.database import EngineBase

logger = structlog.get_logger(__name__)

# Global variables
async_engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def create_session_factory(settings: Settings) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Build an engine and session factory without touching module state"""
    config = settings.get_database_config()
    url = config.pop("url")
    engine = create_async_engine(url, **config)
    if settings.is_sqlite:
        _use_immediate_transactions(engine)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_factory


def _use_immediate_transactions(engine: AsyncEngine):
    """SQLite transactions take the write lock at BEGIN; concurrent model swaps queue on it"""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def create_tables(engine: AsyncEngine):
    """Create the tables owned by the engine (collaborator tables are never created)"""
    async with engine.begin() as conn:
        await conn.run_sync(EngineBase.metadata.create_all)


async def init_database(settings: Settings = None) -> async_sessionmaker:
    """Initialize the async database connection"""
    global async_engine, async_session_maker

    settings = settings or get_settings()
    logger.info("Connecting to database...")

    async_engine, async_session_maker = create_session_factory(settings)

    async with async_session_maker() as session:
        await session.execute(text("SELECT 1"))

    if settings.auto_create_tables:
        await create_tables(async_engine)

    logger.info("Database connection established")
    return async_session_maker


async def close_database():
    """Close the database connection"""
    global async_engine, async_session_maker

    if async_engine:
        await async_engine.dispose()
        logger.info("Database connection closed")
    async_engine = None
    async_session_maker = None


async def get_database_health() -> dict:
    """Get database health status"""
    if not async_engine or not async_session_maker:
        return {
            "status": "not_initialized",
            "connected": False,
        }

    try:
        async with async_session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            connected = result.scalar() == 1
    except Exception as e:
        logger.error("Database connection test failed", error=str(e))
        return {"status": "unhealthy", "connected": False, "error": str(e)}

    health_info = {
        "status": "healthy" if connected else "unhealthy",
        "connected": connected,
    }

    pool = async_engine.pool
    if hasattr(pool, "checkedout"):
        health_info.update({
            "pool_size": pool.size(),
            "checked_out_connections": pool.checkedout(),
            "overflow_connections": pool.overflow(),
        })

    return health_info

# tests/conftest.py
import pytest
import pytest_asyncio

from priority_service.core.config import Settings
from priority_service.core.database import create_session_factory
from priority_service.models.database import EngineBase, SourceBase
from priority_service.services.priority_engine import PriorityEngine
from priority_service.services.interaction_log import SessionResolver
from priority_service.services.scorer import PriorityScorer
from priority_service.services.task_sources import TaskAggregator
from priority_service.services.trainer import ModelTrainer

from .fakes import (
    FakeClock, InMemoryAuditStore, InMemoryInteractionLog, InMemoryModelStore, RecordingDispatcher
)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'priority.sqlite3'}",
        jwt_secret="test-secret",
        training_dispatch="inline",
        enable_structured_logging=False,
        log_level="WARNING",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def interaction_log() -> InMemoryInteractionLog:
    return InMemoryInteractionLog()


@pytest.fixture()
def model_store() -> InMemoryModelStore:
    return InMemoryModelStore()


@pytest.fixture()
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def trainer(interaction_log, model_store, clock) -> ModelTrainer:
    return ModelTrainer(interaction_log, model_store, min_interactions=20, clock=clock)


@pytest.fixture()
def aggregator() -> TaskAggregator:
    """Aggregator with no sources; tests append to ``aggregator.sources``"""
    return TaskAggregator([])


@pytest.fixture()
def priority_engine(interaction_log, model_store, audit_store, trainer, dispatcher,
                    aggregator, clock) -> PriorityEngine:
    """PriorityEngine wired with in-memory fakes"""
    scorer = PriorityScorer(model_store, aggregator, audit_store, clock=clock)
    return PriorityEngine(
        interaction_log=interaction_log,
        model_store=model_store,
        audit_store=audit_store,
        session_resolver=SessionResolver(interaction_log, clock=clock),
        trainer=trainer,
        scorer=scorer,
        dispatcher=dispatcher,
        retrain_every=50,
        clock=clock,
    )


@pytest_asyncio.fixture()
async def session_factory(settings):
    """SQLite-backed session factory with the owned and collaborator tables created"""
    engine, factory = create_session_factory(settings)
    async with engine.begin() as conn:
        await conn.run_sync(EngineBase.metadata.create_all)
        await conn.run_sync(SourceBase.metadata.create_all)
    yield factory
    await engine.dispose()

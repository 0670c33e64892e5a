# tests/test_model_store.py
import asyncio
from datetime import datetime, timezone

import pytest

from priority_service.core.exceptions import ModelVersionConflict
from priority_service.models.schemas import PriorityModel, TaskType, TimeOfDay, TrainingStatus, Urgency
from priority_service.services.interaction_log import SqlInteractionLog
from priority_service.services.model_store import SqlModelStore, serialize_weights
from priority_service.services.trainer import ModelTrainer

from .fakes import make_interaction

CREATED = datetime(2026, 7, 1, 9, 0, tzinfo=timezone.utc)


def _model(version: int, user_id: str = "operator-1") -> PriorityModel:
    return PriorityModel(
        user_id=user_id,
        model_version=version,
        task_type_weights={TaskType.URGENT_CARE: 0.7, TaskType.MESSAGE: 0.3},
        urgency_weights={Urgency.HIGH: 1.0},
        time_pattern_weights={
            TaskType.URGENT_CARE: {TimeOfDay.MORNING: 1.0, TimeOfDay.AFTERNOON: 0.0, TimeOfDay.EVENING: 0.0},
        },
        training_samples=20,
        created_at=CREATED,
    )


def test_serialize_weights_uses_plain_keys():
    data = serialize_weights(_model(1))

    assert data["task_type_weights"] == {"urgent_care": 0.7, "message": 0.3}
    assert data["urgency_weights"] == {"high": 1.0}
    assert data["time_pattern_weights"]["urgent_care"]["morning"] == 1.0


@pytest.mark.asyncio
async def test_sql_store_activates_and_reads_back(session_factory):
    store = SqlModelStore(session_factory)

    await store.activate(_model(1), expected_previous_version=0)
    active = await store.get_active("operator-1")

    assert active.model_version == 1
    assert active.task_type_weights[TaskType.URGENT_CARE] == pytest.approx(0.7)
    assert active.urgency_weights[Urgency.HIGH] == 1.0
    assert active.time_pattern_weights[TaskType.URGENT_CARE][TimeOfDay.MORNING] == 1.0
    assert active.created_at == CREATED


@pytest.mark.asyncio
async def test_sql_store_keeps_single_active_version(session_factory):
    store = SqlModelStore(session_factory)

    await store.activate(_model(1), expected_previous_version=0)
    await store.activate(_model(2), expected_previous_version=1)

    history = await store.list_models("operator-1")
    assert [m.model_version for m in history] == [2, 1]
    assert [m.active for m in history] == [True, False]
    assert (await store.get_active("operator-1")).model_version == 2
    assert await store.latest_version("operator-1") == 2


@pytest.mark.asyncio
async def test_sql_store_rejects_stale_expected_version(session_factory):
    store = SqlModelStore(session_factory)
    await store.activate(_model(1), expected_previous_version=0)

    with pytest.raises(ModelVersionConflict) as exc_info:
        await store.activate(_model(1), expected_previous_version=0)

    assert exc_info.value.details["actual_version"] == 1
    assert (await store.get_active("operator-1")).model_version == 1
    assert len(await store.list_models("operator-1")) == 1


@pytest.mark.asyncio
async def test_concurrent_activations_leave_one_active(model_store):
    results = await asyncio.gather(
        model_store.activate(_model(1), expected_previous_version=0),
        model_store.activate(_model(1), expected_previous_version=0),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ModelVersionConflict)]
    assert len(conflicts) == 1
    assert model_store.active_count("operator-1") == 1


@pytest.mark.asyncio
async def test_sql_store_is_scoped_per_user(session_factory):
    store = SqlModelStore(session_factory)

    await store.activate(_model(1, "operator-1"), expected_previous_version=0)
    await store.activate(_model(1, "operator-2"), expected_previous_version=0)

    assert (await store.get_active("operator-1")).user_id == "operator-1"
    assert (await store.get_active("operator-2")).user_id == "operator-2"
    assert await store.latest_version("operator-3") == 0
    assert await store.get_active("operator-3") is None


class ReadTogetherModelStore(SqlModelStore):
    """Releases latest_version reads only once every trainer has made one"""

    def __init__(self, session_factory, parties: int):
        super().__init__(session_factory)
        self.parties = parties
        self.arrived = 0
        self.all_arrived = asyncio.Event()

    async def latest_version(self, user_id: str) -> int:
        version = await super().latest_version(user_id)
        self.arrived += 1
        if self.arrived >= self.parties:
            self.all_arrived.set()
        await self.all_arrived.wait()
        return version


async def _seed_sql_interactions(session_factory, count: int = 20):
    log = SqlInteractionLog(session_factory)
    for i in range(count):
        await log.append(make_interaction("operator-1", TaskType.MESSAGE, CREATED.replace(minute=i)))
    return log


@pytest.mark.asyncio
async def test_sql_concurrent_activations_leave_one_active(session_factory):
    store = SqlModelStore(session_factory)

    results = await asyncio.gather(
        store.activate(_model(1), expected_previous_version=0),
        store.activate(_model(1), expected_previous_version=0),
        return_exceptions=True,
    )

    assert len([r for r in results if isinstance(r, ModelVersionConflict)]) == 1
    assert [m.active for m in await store.list_models("operator-1")] == [True]


@pytest.mark.asyncio
async def test_sql_concurrent_training_supersedes_the_loser(session_factory):
    log = await _seed_sql_interactions(session_factory)
    store = ReadTogetherModelStore(session_factory, parties=2)
    trainer = ModelTrainer(log, store)

    results = await asyncio.gather(trainer.train("operator-1"), trainer.train("operator-1"))

    assert sorted(r.status.value for r in results) == ["superseded", "trained"]
    superseded = next(r for r in results if r.status == TrainingStatus.SUPERSEDED)
    assert superseded.model.model_version == 1
    history = await store.list_models("operator-1")
    assert [m.model_version for m in history] == [1]
    assert sum(1 for m in history if m.active) == 1


@pytest.mark.asyncio
async def test_sql_concurrent_training_keeps_single_active_model(session_factory):
    log = await _seed_sql_interactions(session_factory)
    store = SqlModelStore(session_factory)
    trainer = ModelTrainer(log, store)

    results = await asyncio.gather(*(trainer.train("operator-1") for _ in range(3)))

    assert all(r.status in (TrainingStatus.TRAINED, TrainingStatus.SUPERSEDED) for r in results)
    history = await store.list_models("operator-1")
    assert sum(1 for m in history if m.active) == 1
    assert history[0].active

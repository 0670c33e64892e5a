# tests/test_scorer.py
from datetime import timedelta

import pytest
from zoneinfo import ZoneInfo

from priority_service.models.schemas import PriorityModel, ScoringStrategy, TaskType, TimeOfDay, Urgency
from priority_service.services.scorer import (
    PriorityScorer, clamp_score, rank_tasks, score_with_defaults, score_with_model
)
from priority_service.services.task_sources import TaskAggregator

from .fakes import FailingTaskSource, StaticTaskSource, make_task


def _model(**kwargs) -> PriorityModel:
    return PriorityModel(user_id="operator-1", model_version=3, **kwargs)


def _scorer(model_store, audit_store, clock, *sources, tz=ZoneInfo("UTC")) -> PriorityScorer:
    return PriorityScorer(model_store, TaskAggregator(sources), audit_store, tz=tz, clock=clock)


def test_clamp_score_bounds():
    assert clamp_score(-12.5) == 0.0
    assert clamp_score(140.0) == 100.0
    assert clamp_score(61.0) == 61.0


def test_default_urgent_care_high_outranks_message(clock):
    urgent = make_task("1", TaskType.URGENT_CARE, clock(), Urgency.HIGH)
    message = make_task("2", TaskType.MESSAGE, clock(), Urgency.MEDIUM)

    urgent_score, _ = score_with_defaults(urgent, clock())
    message_score, _ = score_with_defaults(message, clock())

    assert urgent_score == 100.0
    assert message_score == 60.0


def test_default_fresh_task_gets_exactly_ten_more_than_old(clock):
    fresh = make_task("1", TaskType.PENDING_ITEM, clock() - timedelta(hours=2))
    old = make_task("2", TaskType.PENDING_ITEM, clock() - timedelta(days=30))

    fresh_score, fresh_reasoning = score_with_defaults(fresh, clock())
    old_score, _ = score_with_defaults(old, clock())

    assert fresh_score - old_score == 10.0
    assert fresh_reasoning["factors"]["age"] == 10.0
    assert fresh_reasoning["strategy"] == "default"


def test_default_age_bonus_for_tasks_under_three_days(clock):
    task = make_task("1", TaskType.MEDICATION_REFILL, clock() - timedelta(days=2))

    score, reasoning = score_with_defaults(task, clock())

    assert score == 50.0 + 15.0 + 5.0
    assert reasoning["factors"]["urgency"] == 0.0


def test_default_urgency_bonus_only_applies_to_urgent_care(clock):
    pending = make_task("1", TaskType.PENDING_ITEM, clock() - timedelta(days=10), Urgency.HIGH)
    urgent = make_task("2", TaskType.URGENT_CARE, clock() - timedelta(days=10), Urgency.MEDIUM)

    assert score_with_defaults(pending, clock())[0] == 50.0
    assert score_with_defaults(urgent, clock())[0] == 50.0 + 25.0 + 10.0


def test_model_score_combines_weights(clock):
    model = _model(
        task_type_weights={TaskType.URGENT_CARE: 0.5},
        urgency_weights={Urgency.HIGH: 0.4},
        time_pattern_weights={TaskType.URGENT_CARE: {TimeOfDay.MORNING: 0.25}},
    )
    task = make_task("1", TaskType.URGENT_CARE, clock(), Urgency.HIGH)

    score, reasoning = score_with_model(task, model, TimeOfDay.MORNING)

    assert score == pytest.approx(50 + 0.5 * 20 + 0.4 * 15 + 0.25 * 10)
    assert reasoning["strategy"] == "model"
    assert reasoning["time_of_day"] == "morning"
    assert reasoning["factors"]["urgency"]["contribution"] == pytest.approx(6.0)


def test_model_score_missing_weights_contribute_nothing(clock):
    model = _model(task_type_weights={TaskType.URGENT_CARE: 1.0})
    task = make_task("1", TaskType.MESSAGE, clock())

    score, _ = score_with_model(task, model, TimeOfDay.EVENING)

    assert score == 50.0


def test_rank_breaks_ties_oldest_first_then_input_order(clock):
    older = make_task("older", TaskType.PENDING_ITEM, clock() - timedelta(days=5))
    first = make_task("first", TaskType.PENDING_ITEM, clock())
    second = make_task("second", TaskType.PENDING_ITEM, clock())
    scored = [
        PriorityScorer._scored_task(task, 50.0, {}, model_version=None)
        for task in (first, second, older)
    ]

    ranked = rank_tasks(scored)

    assert [t.id for t in ranked] == ["older", "first", "second"]


@pytest.mark.asyncio
async def test_without_model_uses_default_strategy_and_audits(model_store, audit_store, clock):
    urgent = make_task("1", TaskType.URGENT_CARE, clock(), Urgency.HIGH)
    message = make_task("2", TaskType.MESSAGE, clock())
    scorer = _scorer(
        model_store, audit_store, clock,
        StaticTaskSource("messages", TaskType.MESSAGE, [message]),
        StaticTaskSource("urgent_care_requests", TaskType.URGENT_CARE, [urgent]),
    )

    result = await scorer.get_prioritized_tasks("operator-1")

    assert result.strategy == ScoringStrategy.DEFAULT
    assert result.model_version is None
    assert [t.id for t in result.tasks] == ["1", "2"]
    assert result.tasks[0].suggested_action == "Assess and respond to urgent care request"
    assert len(audit_store.entries) == 2
    assert all(e.model_version_used is None for e in audit_store.entries)
    assert audit_store.entries[0].priority_score == 100.0
    assert audit_store.entries[0].created_at == clock()


@pytest.mark.asyncio
async def test_active_model_drives_ranking(model_store, audit_store, clock):
    await model_store.activate(
        _model(task_type_weights={TaskType.MESSAGE: 0.9, TaskType.URGENT_CARE: 0.1}),
        expected_previous_version=0,
    )
    urgent = make_task("1", TaskType.URGENT_CARE, clock())
    message = make_task("2", TaskType.MESSAGE, clock())
    scorer = _scorer(
        model_store, audit_store, clock,
        StaticTaskSource("urgent_care_requests", TaskType.URGENT_CARE, [urgent]),
        StaticTaskSource("messages", TaskType.MESSAGE, [message]),
    )

    result = await scorer.get_prioritized_tasks("operator-1")

    assert result.strategy == ScoringStrategy.MODEL
    assert result.model_version == 3
    assert [t.id for t in result.tasks] == ["2", "1"]
    assert all(t.model_version_used == 3 for t in result.tasks)
    assert all(e.model_version_used == 3 for e in audit_store.entries)


@pytest.mark.asyncio
async def test_scores_stay_within_bounds(model_store, audit_store, clock):
    await model_store.activate(
        _model(
            task_type_weights={TaskType.URGENT_CARE: 1.0},
            urgency_weights={Urgency.HIGH: 1.0},
            time_pattern_weights={TaskType.URGENT_CARE: {TimeOfDay.MORNING: 1.0}},
        ),
        expected_previous_version=0,
    )
    tasks = [make_task(str(i), TaskType.URGENT_CARE, clock(), Urgency.HIGH) for i in range(3)]
    scorer = _scorer(model_store, audit_store, clock,
                     StaticTaskSource("urgent_care_requests", TaskType.URGENT_CARE, tasks))

    result = await scorer.get_prioritized_tasks("operator-1")

    assert all(0.0 <= t.priority_score <= 100.0 for t in result.tasks)


@pytest.mark.asyncio
async def test_time_bucket_follows_scoring_timezone(model_store, audit_store, clock):
    # The fake clock reads 09:00 UTC, which is 18:00 in Tokyo
    scorer = _scorer(model_store, audit_store, clock, tz=ZoneInfo("Asia/Tokyo"))

    assert scorer.current_bucket(clock()) == TimeOfDay.EVENING


@pytest.mark.asyncio
async def test_failed_source_is_reported_as_degraded(model_store, audit_store, clock):
    urgent = make_task("1", TaskType.URGENT_CARE, clock(), Urgency.HIGH)
    scorer = _scorer(
        model_store, audit_store, clock,
        StaticTaskSource("urgent_care_requests", TaskType.URGENT_CARE, [urgent]),
        FailingTaskSource("messages", TaskType.MESSAGE),
    )

    result = await scorer.get_prioritized_tasks("operator-1")

    assert [t.id for t in result.tasks] == ["1"]
    assert result.degraded_sources == ["messages"]


@pytest.mark.asyncio
async def test_empty_backlog_returns_empty_ranking(model_store, audit_store, clock):
    scorer = _scorer(model_store, audit_store, clock)

    result = await scorer.get_prioritized_tasks("operator-1")

    assert result.tasks == []
    assert audit_store.entries == []

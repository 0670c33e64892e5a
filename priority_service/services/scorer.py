# priority_service/services/scorer.py
import time
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from zoneinfo import ZoneInfo

from priority_service.core.monitoring import SCORING_DURATION, TASKS_SCORED
from priority_service.models.schemas import (
    SUGGESTED_ACTIONS, PrioritizationResult, PrioritizedTask, PriorityModel, ScoredTask,
    ScoringStrategy, Task, TaskType, TimeOfDay, Urgency, utcnow
)
from priority_service.services.audit_store import AuditStore
from priority_service.services.model_store import ModelStore
from priority_service.services.task_sources import TaskAggregator

logger = structlog.get_logger(__name__)

BASE_SCORE = 50.0
MIN_SCORE = 0.0
MAX_SCORE = 100.0

# Learned-model multipliers
TASK_TYPE_MULTIPLIER = 20.0
URGENCY_MULTIPLIER = 15.0
TIME_PATTERN_MULTIPLIER = 10.0

# Default heuristic bonuses
URGENT_CARE_BONUS = 25.0
URGENT_CARE_URGENCY_BONUS = {Urgency.HIGH: 15.0, Urgency.MEDIUM: 10.0}
MEDICATION_REFILL_BONUS = 15.0
AGE_BONUSES = ((1.0, 10.0), (3.0, 5.0))  # (max age in days, bonus); first match wins

DEFAULT_ACTION = "Review and take appropriate action"


def clamp_score(score: float) -> float:
    return min(MAX_SCORE, max(MIN_SCORE, score))


def score_with_model(task: Task, model: PriorityModel,
                     bucket: TimeOfDay) -> Tuple[float, Dict[str, Any]]:
    """Score one task with a learned model; missing weights contribute nothing"""
    type_weight = model.task_type_weight(task.task_type)
    urgency_weight = model.urgency_weight(task.urgency)
    time_weight = model.time_pattern_weight(task.task_type, bucket)

    contributions = {
        "task_type": type_weight * TASK_TYPE_MULTIPLIER,
        "urgency": urgency_weight * URGENCY_MULTIPLIER,
        "time_pattern": time_weight * TIME_PATTERN_MULTIPLIER,
    }
    raw_score = BASE_SCORE + sum(contributions.values())

    reasoning = {
        "strategy": ScoringStrategy.MODEL.value,
        "base_score": BASE_SCORE,
        "time_of_day": bucket.value,
        "factors": {
            "task_type": {
                "value": task.task_type.value,
                "weight": type_weight,
                "contribution": contributions["task_type"],
            },
            "urgency": {
                "value": task.urgency.value if task.urgency else None,
                "weight": urgency_weight,
                "contribution": contributions["urgency"],
            },
            "time_pattern": {
                "value": bucket.value,
                "weight": time_weight,
                "contribution": contributions["time_pattern"],
            },
        },
        "raw_score": raw_score,
    }
    return clamp_score(raw_score), reasoning


def score_with_defaults(task: Task, now: datetime) -> Tuple[float, Dict[str, Any]]:
    """Fixed-rule scoring used when the user has no trained model"""
    type_bonus = 0.0
    urgency_bonus = 0.0

    if task.task_type == TaskType.URGENT_CARE:
        type_bonus = URGENT_CARE_BONUS
        urgency_bonus = URGENT_CARE_URGENCY_BONUS.get(task.urgency, 0.0)
    elif task.task_type == TaskType.MEDICATION_REFILL:
        type_bonus = MEDICATION_REFILL_BONUS

    age_days = max(0.0, (now - task.created_at).total_seconds() / 86400)
    age_bonus = 0.0
    for max_age, bonus in AGE_BONUSES:
        if age_days < max_age:
            age_bonus = bonus
            break

    raw_score = BASE_SCORE + type_bonus + urgency_bonus + age_bonus
    reasoning = {
        "strategy": ScoringStrategy.DEFAULT.value,
        "summary": "Default priority based on task type and age",
        "base_score": BASE_SCORE,
        "factors": {
            "task_type": type_bonus,
            "urgency": urgency_bonus,
            "age": age_bonus,
        },
        "age_days": round(age_days, 3),
        "raw_score": raw_score,
    }
    return clamp_score(raw_score), reasoning


def rank_tasks(tasks: List[ScoredTask]) -> List[ScoredTask]:
    # Highest score first; equal scores go oldest first, then keep aggregation order.
    return sorted(tasks, key=lambda t: (-t.priority_score, t.created_at))


class PriorityScorer:
    """Ranks a user's open tasks and records every decision in the audit store"""

    def __init__(self, model_store: ModelStore, aggregator: TaskAggregator,
                 audit_store: AuditStore, tz: tzinfo = ZoneInfo("UTC"),
                 clock: Callable[[], datetime] = utcnow):
        self.model_store = model_store
        self.aggregator = aggregator
        self.audit_store = audit_store
        self.tz = tz
        self.clock = clock

    def current_bucket(self, now: datetime) -> TimeOfDay:
        return TimeOfDay.from_hour(now.astimezone(self.tz).hour)

    async def get_prioritized_tasks(self, user_id: str) -> PrioritizationResult:
        start_time = time.perf_counter()

        model = await self.model_store.get_active(user_id)
        aggregated = await self.aggregator.collect(user_id)
        now = self.clock()

        if model is None:
            logger.info("No active priority model; using default heuristic", user_id=user_id)
            strategy = ScoringStrategy.DEFAULT
            scored = [
                self._scored_task(task, *score_with_defaults(task, now), model_version=None)
                for task in aggregated.tasks
            ]
        else:
            strategy = ScoringStrategy.MODEL
            bucket = self.current_bucket(now)
            scored = [
                self._scored_task(task, *score_with_model(task, model, bucket),
                                  model_version=model.model_version)
                for task in aggregated.tasks
            ]

        ranked = rank_tasks(scored)
        await self.audit_store.record([self._audit_entry(user_id, task, now) for task in ranked])

        SCORING_DURATION.labels(strategy=strategy.value).observe(time.perf_counter() - start_time)
        for task in ranked:
            TASKS_SCORED.labels(strategy=strategy.value, task_type=task.task_type.value).inc()

        logger.info(
            "Prioritized tasks",
            user_id=user_id,
            strategy=strategy.value,
            model_version=model.model_version if model else None,
            task_count=len(ranked),
            degraded_sources=aggregated.failed_sources,
        )

        return PrioritizationResult(
            user_id=user_id,
            strategy=strategy,
            model_version=model.model_version if model else None,
            tasks=ranked,
            degraded_sources=aggregated.failed_sources,
        )

    @staticmethod
    def _scored_task(task: Task, score: float, reasoning: Dict[str, Any],
                     model_version: Optional[int]) -> ScoredTask:
        return ScoredTask(
            **task.model_dump(),
            priority_score=score,
            reasoning=reasoning,
            suggested_action=SUGGESTED_ACTIONS.get(task.task_type, DEFAULT_ACTION),
            model_version_used=model_version,
        )

    @staticmethod
    def _audit_entry(user_id: str, task: ScoredTask, now: datetime) -> PrioritizedTask:
        return PrioritizedTask(
            user_id=user_id,
            task_type=task.task_type,
            task_id=task.id,
            priority_score=task.priority_score,
            reasoning=task.reasoning,
            suggested_action=task.suggested_action,
            model_version_used=task.model_version_used,
            created_at=now,
        )

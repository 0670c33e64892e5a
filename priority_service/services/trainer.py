# priority_service/services/trainer.py
import time
from collections import Counter, defaultdict
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, List

import structlog
from zoneinfo import ZoneInfo

from priority_service.core.exceptions import ModelVersionConflict
from priority_service.core.logging import log_model_training
from priority_service.core.monitoring import TRAINING_DURATION, TRAINING_RUNS
from priority_service.models.schemas import (
    PriorityModel, TaskInteraction, TimeOfDay, TrainingResult, TrainingStatus, Urgency, utcnow
)
from priority_service.services.interaction_log import InteractionLog
from priority_service.services.model_store import ModelStore

logger = structlog.get_logger(__name__)


def compute_weights(interactions: List[TaskInteraction], tz: tzinfo) -> Dict[str, Any]:
    """
    Turn an interaction history into the weight maps of a PriorityModel.

    - task_type_weights: share of all interactions per task type (sums to 1)
    - time_pattern_weights: per task type, number of its interactions that happened
      in each time-of-day bucket (local to ``tz``); the scorer clamp bounds the effect
    - urgency_weights: share per urgency label found in ``context["urgency"]``;
      empty when no interaction carries one
    """
    type_counts = Counter(i.task_type for i in interactions)
    total = sum(type_counts.values())

    task_type_weights = {
        task_type: count / total for task_type, count in type_counts.items()
    } if total else {}

    bucket_counts = defaultdict(Counter)
    for interaction in interactions:
        hour = interaction.timestamp.astimezone(tz).hour
        bucket_counts[interaction.task_type][TimeOfDay.from_hour(hour)] += 1

    time_pattern_weights = {
        task_type: {
            bucket: float(buckets[bucket]) for bucket in TimeOfDay
        }
        for task_type, buckets in bucket_counts.items()
    }

    urgency_counts = Counter()
    for interaction in interactions:
        urgency = Urgency.from_label(interaction.context.get("urgency"))
        if urgency is not None:
            urgency_counts[urgency] += 1
    urgency_total = sum(urgency_counts.values())

    urgency_weights = {
        urgency: count / urgency_total for urgency, count in urgency_counts.items()
    } if urgency_total else {}

    return {
        "task_type_weights": task_type_weights,
        "time_pattern_weights": time_pattern_weights,
        "urgency_weights": urgency_weights,
        "patient_factor_weights": {},
    }


class ModelTrainer:
    """Builds a new PriorityModel version from a user's interaction history"""

    def __init__(self, interaction_log: InteractionLog, model_store: ModelStore,
                 min_interactions: int = 20, tz: tzinfo = ZoneInfo("UTC"),
                 clock: Callable[[], datetime] = utcnow):
        self.interaction_log = interaction_log
        self.model_store = model_store
        self.min_interactions = min_interactions
        self.tz = tz
        self.clock = clock

    async def train(self, user_id: str) -> TrainingResult:
        start_time = time.perf_counter()
        interactions = await self.interaction_log.list_for_user(user_id)
        interaction_count = len(interactions)

        if interaction_count < self.min_interactions:
            logger.info(
                "Not enough interactions to train model",
                user_id=user_id,
                interaction_count=interaction_count,
                required=self.min_interactions,
            )
            TRAINING_RUNS.labels(outcome="needs_more_data").inc()
            return TrainingResult(
                user_id=user_id,
                status=TrainingStatus.NEEDS_MORE_DATA,
                interaction_count=interaction_count,
            )

        weights = compute_weights(interactions, self.tz)
        previous_version = await self.model_store.latest_version(user_id)
        candidate = PriorityModel(
            user_id=user_id,
            model_version=previous_version + 1,
            training_samples=interaction_count,
            created_at=self.clock(),
            **weights,
        )

        try:
            model = await self.model_store.activate(candidate, previous_version)
        except ModelVersionConflict as e:
            logger.info(
                "Concurrent training already produced this model version",
                **e.details,
            )
            TRAINING_RUNS.labels(outcome="superseded").inc()
            return TrainingResult(
                user_id=user_id,
                status=TrainingStatus.SUPERSEDED,
                interaction_count=interaction_count,
                model=await self.model_store.get_active(user_id),
            )
        except Exception:
            TRAINING_RUNS.labels(outcome="failed").inc()
            raise

        duration = time.perf_counter() - start_time
        TRAINING_DURATION.observe(duration)
        TRAINING_RUNS.labels(outcome="trained").inc()
        log_model_training(
            user_id=user_id,
            model_version=model.model_version,
            duration_ms=duration * 1000,
            samples=interaction_count,
        )

        return TrainingResult(
            user_id=user_id,
            status=TrainingStatus.TRAINED,
            interaction_count=interaction_count,
            model=model,
        )

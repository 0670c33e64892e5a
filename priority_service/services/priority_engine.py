# priority_service/services/priority_engine.py
from datetime import datetime, timedelta
from typing import Callable, List

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from priority_service.core.config import Settings
from priority_service.core.exceptions import InsufficientDataException
from priority_service.core.monitoring import INTERACTIONS_RECORDED, TRAINING_DISPATCHES
from priority_service.models.schemas import (
    ModelInfoResponse, PrioritizationResult, PrioritizedTask, PriorityModel, RecordInteractionRequest,
    RecordResult, TaskInteraction, TrainingResult, utcnow
)
from priority_service.services.audit_store import AuditStore, SqlAuditStore
from priority_service.services.interaction_log import InteractionLog, SessionResolver, SqlInteractionLog
from priority_service.services.model_store import ModelStore, SqlModelStore
from priority_service.services.scorer import PriorityScorer
from priority_service.services.task_sources import TaskAggregator, build_task_sources
from priority_service.services.trainer import ModelTrainer
from priority_service.services.training_dispatch import (
    BackgroundTrainingDispatcher, CeleryTrainingDispatcher, InlineTrainingDispatcher, TrainingDispatcher
)

logger = structlog.get_logger(__name__)


class PriorityEngine:
    """
    Entry point for the prioritization workflow.

    Recording an interaction resolves its session, appends it to the log and, on
    every ``retrain_every``-th interaction of a user, publishes a retrain request.
    Scoring, model info and forced training are delegated to the components.
    """

    def __init__(self, interaction_log: InteractionLog, model_store: ModelStore,
                 audit_store: AuditStore, session_resolver: SessionResolver,
                 trainer: ModelTrainer, scorer: PriorityScorer,
                 dispatcher: TrainingDispatcher, retrain_every: int = 50,
                 clock: Callable[[], datetime] = utcnow):
        self.interaction_log = interaction_log
        self.model_store = model_store
        self.audit_store = audit_store
        self.session_resolver = session_resolver
        self.trainer = trainer
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.retrain_every = retrain_every
        self.clock = clock

    @property
    def min_training_interactions(self) -> int:
        return self.trainer.min_interactions

    async def record_interaction(self, user_id: str, request: RecordInteractionRequest) -> RecordResult:
        session_id = await self.session_resolver.resolve(user_id)

        interaction = TaskInteraction(
            user_id=user_id,
            task_type=request.task_type,
            task_id=request.task_id,
            action=request.action,
            session_id=session_id,
            order_in_session=request.order_in_session,
            time_spent=request.time_spent,
            context=request.context,
            timestamp=self.clock(),
        )
        await self.interaction_log.append(interaction)
        INTERACTIONS_RECORDED.labels(task_type=interaction.task_type.value).inc()

        interaction_count = await self.interaction_log.count_for_user(user_id)
        training_triggered = interaction_count % self.retrain_every == 0
        if training_triggered:
            await self._publish_retrain(user_id, interaction_count)

        return RecordResult(
            interaction=interaction,
            interaction_count=interaction_count,
            training_triggered=training_triggered,
        )

    async def _publish_retrain(self, user_id: str, interaction_count: int):
        try:
            await self.dispatcher.dispatch(user_id)
        except Exception:
            # The interaction is already stored; the next multiple retries training.
            logger.exception(
                "Failed to publish model training",
                user_id=user_id,
                interaction_count=interaction_count,
                mode=self.dispatcher.mode,
            )
            TRAINING_DISPATCHES.labels(mode=self.dispatcher.mode, outcome="failed").inc()
            return

        TRAINING_DISPATCHES.labels(mode=self.dispatcher.mode, outcome="published").inc()
        logger.info(
            "Published model training",
            user_id=user_id,
            interaction_count=interaction_count,
            mode=self.dispatcher.mode,
        )

    async def get_prioritized_tasks(self, user_id: str) -> PrioritizationResult:
        return await self.scorer.get_prioritized_tasks(user_id)

    async def get_model_info(self, user_id: str) -> ModelInfoResponse:
        model = await self.model_store.get_active(user_id)
        interaction_count = await self.interaction_log.count_for_user(user_id)

        return ModelInfoResponse(
            model_exists=model is not None,
            model_version=model.model_version if model else 0,
            interaction_count=interaction_count,
            model_created_at=model.created_at if model else None,
            accuracy=model.accuracy if model else None,
            needs_more_data=interaction_count < self.min_training_interactions,
        )

    async def train_model(self, user_id: str) -> TrainingResult:
        """Forced training; refuses explicitly when the history is too short"""
        interaction_count = await self.interaction_log.count_for_user(user_id)
        if interaction_count < self.min_training_interactions:
            raise InsufficientDataException(
                required=self.min_training_interactions,
                available=interaction_count,
                operation="model training",
            )
        return await self.trainer.train(user_id)

    async def list_models(self, user_id: str) -> List[PriorityModel]:
        return await self.model_store.list_models(user_id)

    async def audit_trail(self, user_id: str, limit: int = 50) -> List[PrioritizedTask]:
        return await self.audit_store.list_recent(user_id, limit)

    async def shutdown(self):
        await self.dispatcher.drain()


def build_dispatcher(settings: Settings, trainer: ModelTrainer) -> TrainingDispatcher:
    if settings.training_dispatch == "inline":
        return InlineTrainingDispatcher(trainer)
    if settings.training_dispatch == "celery":
        from priority_service.tasks import train_priority_model
        return CeleryTrainingDispatcher(train_priority_model)
    return BackgroundTrainingDispatcher(trainer)


def build_trainer(settings: Settings, session_factory: async_sessionmaker,
                  clock: Callable[[], datetime] = utcnow) -> ModelTrainer:
    return ModelTrainer(
        interaction_log=SqlInteractionLog(session_factory),
        model_store=SqlModelStore(session_factory),
        min_interactions=settings.min_training_interactions,
        tz=settings.scoring_tz,
        clock=clock,
    )


def build_priority_engine(settings: Settings, session_factory: async_sessionmaker,
                          clock: Callable[[], datetime] = utcnow) -> PriorityEngine:
    """Wire the SQL-backed components from settings"""
    interaction_log = SqlInteractionLog(session_factory)
    model_store = SqlModelStore(session_factory)
    audit_store = SqlAuditStore(session_factory)
    aggregator = TaskAggregator(
        build_task_sources(session_factory, message_limit=settings.message_source_limit)
    )

    trainer = ModelTrainer(
        interaction_log=interaction_log,
        model_store=model_store,
        min_interactions=settings.min_training_interactions,
        tz=settings.scoring_tz,
        clock=clock,
    )
    scorer = PriorityScorer(
        model_store=model_store,
        aggregator=aggregator,
        audit_store=audit_store,
        tz=settings.scoring_tz,
        clock=clock,
    )

    return PriorityEngine(
        interaction_log=interaction_log,
        model_store=model_store,
        audit_store=audit_store,
        session_resolver=SessionResolver(
            interaction_log,
            window=timedelta(minutes=settings.session_window_minutes),
            clock=clock,
        ),
        trainer=trainer,
        scorer=scorer,
        dispatcher=build_dispatcher(settings, trainer),
        retrain_every=settings.retrain_every_interactions,
        clock=clock,
    )

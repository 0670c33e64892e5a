# priority_service/services/training_dispatch.py
"""
Delivery of retrain requests published after an interaction is recorded.

``inline`` trains on the write path, ``background`` schedules the training on the
running event loop, and ``celery`` hands it to a worker process.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Set

import structlog

from priority_service.services.trainer import ModelTrainer

logger = structlog.get_logger(__name__)


class TrainingDispatcher(ABC):
    mode: str

    @abstractmethod
    async def dispatch(self, user_id: str) -> None:
        ...

    async def drain(self) -> None:
        """Wait for dispatched work that runs in this process"""


class InlineTrainingDispatcher(TrainingDispatcher):
    mode = "inline"

    def __init__(self, trainer: ModelTrainer):
        self.trainer = trainer

    async def dispatch(self, user_id: str) -> None:
        await self.trainer.train(user_id)


class BackgroundTrainingDispatcher(TrainingDispatcher):
    mode = "background"

    def __init__(self, trainer: ModelTrainer):
        self.trainer = trainer
        self._pending: Set[asyncio.Task] = set()

    async def dispatch(self, user_id: str) -> None:
        task = asyncio.create_task(self._run(user_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, user_id: str) -> None:
        try:
            await self.trainer.train(user_id)
        except Exception:
            logger.exception("Background model training failed", user_id=user_id)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))


class CeleryTrainingDispatcher(TrainingDispatcher):
    mode = "celery"

    def __init__(self, celery_task):
        self.celery_task = celery_task

    async def dispatch(self, user_id: str) -> None:
        result = await asyncio.to_thread(self.celery_task.delay, user_id)
        logger.info("Queued model training", user_id=user_id, celery_task_id=result.id)

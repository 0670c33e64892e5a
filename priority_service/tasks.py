# priority_service/tasks.py
import asyncio

import structlog

from priority_service.celery_app import celery_app
from priority_service.core.config import get_settings
from priority_service.core.database import create_session_factory
from priority_service.services.priority_engine import build_trainer

logger = structlog.get_logger(__name__)


async def _train(user_id: str) -> dict:
    settings = get_settings()
    engine, session_factory = create_session_factory(settings)
    try:
        result = await build_trainer(settings, session_factory).train(user_id)
    finally:
        await engine.dispose()

    return {
        "user_id": user_id,
        "status": result.status.value,
        "interaction_count": result.interaction_count,
        "model_version": result.model.model_version if result.model else None,
    }


@celery_app.task(name="priority_service.tasks.train_priority_model")
def train_priority_model(user_id: str):
    logger.info("Worker training priority model", user_id=user_id)
    return asyncio.run(_train(user_id))

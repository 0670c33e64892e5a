# priority_service/services/model_store.py
from abc import ABC, abstractmethod
from typing import List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from priority_service.core.exceptions import ModelVersionConflict, PersistenceException
from priority_service.models.database import PriorityModelRecord
from priority_service.models.schemas import PriorityModel

logger = structlog.get_logger(__name__)


class ModelStore(ABC):
    """Versioned per-user PriorityModel snapshots; at most one active per user"""

    @abstractmethod
    async def get_active(self, user_id: str) -> Optional[PriorityModel]:
        ...

    @abstractmethod
    async def latest_version(self, user_id: str) -> int:
        """Highest version ever stored for the user, 0 when none"""

    @abstractmethod
    async def list_models(self, user_id: str) -> List[PriorityModel]:
        """All versions for the user, newest first"""

    @abstractmethod
    async def activate(self, model: PriorityModel, expected_previous_version: int) -> PriorityModel:
        """
        Store ``model`` as the user's only active model.

        Deactivating the previous model and inserting the new one happen in one
        transaction. Raises ModelVersionConflict if the latest stored version is no
        longer ``expected_previous_version``.
        """


def serialize_weights(model: PriorityModel) -> dict:
    return {
        "task_type_weights": {k.value: v for k, v in model.task_type_weights.items()},
        "urgency_weights": {k.value: v for k, v in model.urgency_weights.items()},
        "time_pattern_weights": {
            task_type.value: {bucket.value: w for bucket, w in buckets.items()}
            for task_type, buckets in model.time_pattern_weights.items()
        },
        "patient_factor_weights": dict(model.patient_factor_weights),
    }


class SqlModelStore(ModelStore):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_active(self, user_id: str) -> Optional[PriorityModel]:
        query = select(PriorityModelRecord).where(
            PriorityModelRecord.user_id == user_id,
            PriorityModelRecord.active.is_(True),
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                record = result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceException("get_active_model", str(e)) from e
        return self._to_model(record) if record else None

    async def latest_version(self, user_id: str) -> int:
        query = select(func.max(PriorityModelRecord.model_version)).where(
            PriorityModelRecord.user_id == user_id
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise PersistenceException("latest_model_version", str(e)) from e

    async def list_models(self, user_id: str) -> List[PriorityModel]:
        query = (
            select(PriorityModelRecord)
            .where(PriorityModelRecord.user_id == user_id)
            .order_by(PriorityModelRecord.model_version.desc())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [self._to_model(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceException("list_models", str(e)) from e

    async def activate(self, model: PriorityModel, expected_previous_version: int) -> PriorityModel:
        record = PriorityModelRecord(
            user_id=model.user_id,
            model_version=model.model_version,
            active=True,
            accuracy=model.accuracy,
            training_samples=model.training_samples,
            created_at=model.created_at,
            **serialize_weights(model),
        )

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    current = await session.scalar(
                        select(func.max(PriorityModelRecord.model_version)).where(
                            PriorityModelRecord.user_id == model.user_id
                        )
                    )
                    current = int(current or 0)
                    if current != expected_previous_version:
                        raise ModelVersionConflict(model.user_id, expected_previous_version, current)

                    await session.execute(
                        update(PriorityModelRecord)
                        .where(
                            PriorityModelRecord.user_id == model.user_id,
                            PriorityModelRecord.active.is_(True),
                        )
                        .values(active=False)
                    )
                    session.add(record)
        except IntegrityError as e:
            # A concurrent trainer committed the same version first.
            raise ModelVersionConflict(
                model.user_id, expected_previous_version, expected_previous_version + 1
            ) from e
        except SQLAlchemyError as e:
            logger.error("Failed to store priority model", user_id=model.user_id, error=str(e))
            raise PersistenceException("activate_model", str(e)) from e

        return model.model_copy(update={"active": True})

    @staticmethod
    def _to_model(record: PriorityModelRecord) -> PriorityModel:
        return PriorityModel(
            user_id=record.user_id,
            model_version=record.model_version,
            task_type_weights=record.task_type_weights or {},
            urgency_weights=record.urgency_weights or {},
            time_pattern_weights=record.time_pattern_weights or {},
            patient_factor_weights=record.patient_factor_weights or {},
            active=record.active,
            accuracy=record.accuracy,
            training_samples=record.training_samples,
            created_at=record.created_at,
        )

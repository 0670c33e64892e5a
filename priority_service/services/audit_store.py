# priority_service/services/audit_store.py
from abc import ABC, abstractmethod
from typing import List, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from priority_service.core.exceptions import PersistenceException
from priority_service.models.database import PrioritizedTaskRecord
from priority_service.models.schemas import PrioritizedTask

logger = structlog.get_logger(__name__)


class AuditStore(ABC):
    """Append-only log of scoring decisions"""

    @abstractmethod
    async def record(self, entries: Sequence[PrioritizedTask]) -> None:
        ...

    @abstractmethod
    async def list_recent(self, user_id: str, limit: int = 50) -> List[PrioritizedTask]:
        ...


class SqlAuditStore(AuditStore):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(self, entries: Sequence[PrioritizedTask]) -> None:
        if not entries:
            return

        records = [
            PrioritizedTaskRecord(
                id=entry.id,
                user_id=entry.user_id,
                task_type=entry.task_type.value,
                task_id=entry.task_id,
                priority_score=entry.priority_score,
                reasoning=entry.reasoning,
                suggested_action=entry.suggested_action,
                model_version_used=entry.model_version_used,
                created_at=entry.created_at,
            )
            for entry in entries
        ]
        try:
            async with self.session_factory() as session:
                session.add_all(records)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to persist prioritization audit", user_id=entries[0].user_id, error=str(e))
            raise PersistenceException("record_prioritization", str(e)) from e

    async def list_recent(self, user_id: str, limit: int = 50) -> List[PrioritizedTask]:
        query = (
            select(PrioritizedTaskRecord)
            .where(PrioritizedTaskRecord.user_id == user_id)
            .order_by(PrioritizedTaskRecord.created_at.desc())
            .limit(limit)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceException("list_prioritization_audit", str(e)) from e

        return [
            PrioritizedTask(
                id=r.id,
                user_id=r.user_id,
                task_type=r.task_type,
                task_id=r.task_id,
                priority_score=r.priority_score,
                reasoning=r.reasoning or {},
                suggested_action=r.suggested_action,
                model_version_used=r.model_version_used,
                created_at=r.created_at,
            )
            for r in records
        ]

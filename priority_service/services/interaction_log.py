# priority_service/services/interaction_log.py
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from priority_service.core.exceptions import PersistenceException
from priority_service.models.database import TaskInteractionRecord
from priority_service.models.schemas import TaskInteraction, utcnow

logger = structlog.get_logger(__name__)


class InteractionLog(ABC):
    """Append-only store of operator actions on tasks"""

    @abstractmethod
    async def append(self, interaction: TaskInteraction) -> None:
        ...

    @abstractmethod
    async def count_for_user(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[TaskInteraction]:
        """All interactions for a user, oldest first"""

    @abstractmethod
    async def latest_since(self, user_id: str, since: datetime) -> Optional[TaskInteraction]:
        """Most recent interaction strictly after ``since``, if any"""


class SqlInteractionLog(InteractionLog):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, interaction: TaskInteraction) -> None:
        record = TaskInteractionRecord(
            user_id=interaction.user_id,
            task_type=interaction.task_type.value,
            task_id=interaction.task_id,
            action=interaction.action,
            session_id=interaction.session_id,
            order_in_session=interaction.order_in_session,
            time_spent=interaction.time_spent,
            context=interaction.context,
            timestamp=interaction.timestamp,
        )
        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to record interaction", user_id=interaction.user_id, error=str(e))
            raise PersistenceException("record_interaction", str(e)) from e

    async def count_for_user(self, user_id: str) -> int:
        query = select(func.count()).select_from(TaskInteractionRecord).where(
            TaskInteractionRecord.user_id == user_id
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise PersistenceException("count_interactions", str(e)) from e

    async def list_for_user(self, user_id: str) -> List[TaskInteraction]:
        query = (
            select(TaskInteractionRecord)
            .where(TaskInteractionRecord.user_id == user_id)
            .order_by(TaskInteractionRecord.timestamp.asc())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [self._to_interaction(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceException("list_interactions", str(e)) from e

    async def latest_since(self, user_id: str, since: datetime) -> Optional[TaskInteraction]:
        query = (
            select(TaskInteractionRecord)
            .where(
                TaskInteractionRecord.user_id == user_id,
                TaskInteractionRecord.timestamp > since,
            )
            .order_by(TaskInteractionRecord.timestamp.desc())
            .limit(1)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                record = result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceException("latest_interaction", str(e)) from e
        return self._to_interaction(record) if record else None

    @staticmethod
    def _to_interaction(record: TaskInteractionRecord) -> TaskInteraction:
        return TaskInteraction(
            user_id=record.user_id,
            task_type=record.task_type,
            task_id=record.task_id,
            action=record.action,
            session_id=record.session_id,
            order_in_session=record.order_in_session,
            time_spent=record.time_spent,
            context=record.context or {},
            timestamp=record.timestamp,
        )


class SessionResolver:
    """
    Groups interactions into sessions.

    An interaction joins the session of the user's latest interaction when that one
    falls inside the trailing window; an idle gap of a full window or more starts a
    new session.
    """

    def __init__(self, interaction_log: InteractionLog, window: timedelta = timedelta(hours=1),
                 clock: Callable[[], datetime] = utcnow):
        self.interaction_log = interaction_log
        self.window = window
        self.clock = clock

    async def resolve(self, user_id: str) -> str:
        since = self.clock() - self.window
        recent = await self.interaction_log.latest_since(user_id, since)

        if recent is not None and recent.session_id:
            return recent.session_id

        session_id = str(uuid.uuid4())
        logger.debug("Started new interaction session", user_id=user_id, session_id=session_id)
        return session_id

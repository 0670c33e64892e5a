# priority_service/services/task_sources.py
"""
Read-only adapters over the collaborator task tables.

Each adapter knows its own "open" filter and how to normalize a source row into a
Task. The aggregator fans out to every adapter and keeps going when one fails.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from priority_service.core.exceptions import TaskSourceException
from priority_service.core.monitoring import SOURCE_FAILURES
from priority_service.models.database import MedicationRefill, Message, PendingItem, UrgentCareRequest
from priority_service.models.schemas import Task, TaskType, Urgency

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MESSAGE_PREVIEW_LENGTH = 100


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


def _patient_id(value) -> Optional[str]:
    return str(value) if value is not None else None


class TaskSource(ABC):
    """A collaborator that produces open tasks of a single type"""

    name: str
    task_type: TaskType

    @abstractmethod
    async def fetch_open(self, user_id: str) -> List[Task]:
        ...


class SqlTaskSource(TaskSource):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @abstractmethod
    def build_query(self):
        ...

    @abstractmethod
    def normalize(self, row) -> Task:
        ...

    async def fetch_open(self, user_id: str) -> List[Task]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(self.build_query())
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise TaskSourceException(self.name, str(e)) from e
        return [self.normalize(row) for row in rows]


class PendingItemsSource(SqlTaskSource):
    name = "pending_items"
    task_type = TaskType.PENDING_ITEM

    def build_query(self):
        return select(PendingItem).where(PendingItem.status == "pending")

    def normalize(self, row) -> Task:
        return Task(
            id=str(row.id),
            task_type=self.task_type,
            patient_id=_patient_id(row.patient_id),
            title=f"{row.type}: {row.description}",
            description=row.description,
            urgency=Urgency.from_label(row.priority),
            created_at=row.created_at or EPOCH,
            due_date=row.due_date,
            status=row.status,
            original_data=_row_to_dict(row),
        )


class UrgentCareSource(SqlTaskSource):
    name = "urgent_care_requests"
    task_type = TaskType.URGENT_CARE

    def build_query(self):
        return select(UrgentCareRequest).where(UrgentCareRequest.status == "new")

    def normalize(self, row) -> Task:
        return Task(
            id=str(row.id),
            task_type=self.task_type,
            patient_id=_patient_id(row.patient_id),
            title=f"Urgent Care: {row.request_type}",
            description=row.problem_description,
            urgency=Urgency.from_label(row.priority),
            created_at=row.received_at or EPOCH,
            status=row.status,
            original_data=_row_to_dict(row),
        )


class MedicationRefillSource(SqlTaskSource):
    name = "medication_refills"
    task_type = TaskType.MEDICATION_REFILL

    def build_query(self):
        return select(MedicationRefill).where(MedicationRefill.status == "pending")

    def normalize(self, row) -> Task:
        return Task(
            id=str(row.id),
            task_type=self.task_type,
            title=f"Medication Refill: {row.medication_name} for {row.patient_name}",
            description=f"{row.patient_name} needs a refill for {row.medication_name}",
            urgency=Urgency.MEDIUM,
            created_at=row.date_received or EPOCH,
            status=row.status,
            original_data=_row_to_dict(row),
        )


class UnreadMessagesSource(SqlTaskSource):
    name = "messages"
    task_type = TaskType.MESSAGE

    def __init__(self, session_factory: async_sessionmaker, limit: int = 20):
        super().__init__(session_factory)
        self.limit = limit

    def build_query(self):
        return (
            select(Message)
            .where(Message.is_from_patient.is_(True))
            .order_by(Message.timestamp.desc())
            .limit(self.limit)
        )

    def normalize(self, row) -> Task:
        content = row.content or ""
        if len(content) > MESSAGE_PREVIEW_LENGTH:
            content = f"{content[:MESSAGE_PREVIEW_LENGTH]}..."
        return Task(
            id=str(row.id),
            task_type=self.task_type,
            patient_id=_patient_id(row.patient_id),
            title="New Message",
            description=content,
            urgency=Urgency.MEDIUM,
            created_at=row.timestamp or EPOCH,
            status="unread",
            original_data=_row_to_dict(row),
        )


@dataclass
class AggregatedTasks:
    tasks: List[Task] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)


class TaskAggregator:
    """Collects open tasks from every source; a failing source is dropped, not fatal"""

    def __init__(self, sources: Sequence[TaskSource]):
        self.sources = list(sources)

    async def collect(self, user_id: str) -> AggregatedTasks:
        results = await asyncio.gather(
            *(self._fetch(source, user_id) for source in self.sources)
        )

        aggregated = AggregatedTasks()
        for source, tasks in zip(self.sources, results):
            if tasks is None:
                aggregated.failed_sources.append(source.name)
            else:
                aggregated.tasks.extend(tasks)
        return aggregated

    async def list_open_tasks(self, user_id: str) -> List[Task]:
        return (await self.collect(user_id)).tasks

    async def _fetch(self, source: TaskSource, user_id: str):
        try:
            return await source.fetch_open(user_id)
        except Exception as e:
            logger.warning(
                "Task source failed; continuing without it",
                source=source.name,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            SOURCE_FAILURES.labels(source=source.name).inc()
            return None


def build_task_sources(session_factory: async_sessionmaker, message_limit: int = 20) -> List[TaskSource]:
    return [
        PendingItemsSource(session_factory),
        UrgentCareSource(session_factory),
        MedicationRefillSource(session_factory),
        UnreadMessagesSource(session_factory, limit=message_limit),
    ]

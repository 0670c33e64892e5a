# tests/fakes.py
"""In-memory stand-ins for the SQL repositories and collaborators"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from priority_service.core.exceptions import ModelVersionConflict, PersistenceException, TaskSourceException
from priority_service.models.schemas import PrioritizedTask, PriorityModel, Task, TaskInteraction, TaskType
from priority_service.services.audit_store import AuditStore
from priority_service.services.interaction_log import InteractionLog
from priority_service.services.model_store import ModelStore
from priority_service.services.task_sources import TaskSource
from priority_service.services.training_dispatch import TrainingDispatcher


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = datetime(2026, 7, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class InMemoryInteractionLog(InteractionLog):
    def __init__(self):
        self.interactions: List[TaskInteraction] = []

    async def append(self, interaction: TaskInteraction) -> None:
        self.interactions.append(interaction)

    async def count_for_user(self, user_id: str) -> int:
        return sum(1 for i in self.interactions if i.user_id == user_id)

    async def list_for_user(self, user_id: str) -> List[TaskInteraction]:
        return sorted(
            (i for i in self.interactions if i.user_id == user_id),
            key=lambda i: i.timestamp,
        )

    async def latest_since(self, user_id: str, since: datetime) -> Optional[TaskInteraction]:
        recent = [i for i in await self.list_for_user(user_id) if i.timestamp > since]
        return recent[-1] if recent else None


class InMemoryModelStore(ModelStore):
    """
    Keeps every version per user.

    ``fail_activate`` makes the next activation raise before anything changes,
    mirroring a rolled back transaction.
    """

    def __init__(self):
        self.models: Dict[str, List[PriorityModel]] = {}
        self.fail_activate = False

    async def get_active(self, user_id: str) -> Optional[PriorityModel]:
        for model in self.models.get(user_id, []):
            if model.active:
                return model
        return None

    async def latest_version(self, user_id: str) -> int:
        return max((m.model_version for m in self.models.get(user_id, [])), default=0)

    async def list_models(self, user_id: str) -> List[PriorityModel]:
        return sorted(self.models.get(user_id, []), key=lambda m: m.model_version, reverse=True)

    async def activate(self, model: PriorityModel, expected_previous_version: int) -> PriorityModel:
        if self.fail_activate:
            raise PersistenceException("activate_model", "simulated write failure")

        current = max((m.model_version for m in self.models.get(model.user_id, [])), default=0)
        if current != expected_previous_version:
            raise ModelVersionConflict(model.user_id, expected_previous_version, current)

        versions = [m.model_copy(update={"active": False}) for m in self.models.get(model.user_id, [])]
        stored = model.model_copy(update={"active": True})
        self.models[model.user_id] = versions + [stored]
        return stored

    def active_count(self, user_id: str) -> int:
        return sum(1 for m in self.models.get(user_id, []) if m.active)


class InMemoryAuditStore(AuditStore):
    def __init__(self):
        self.entries: List[PrioritizedTask] = []

    async def record(self, entries: Sequence[PrioritizedTask]) -> None:
        self.entries.extend(entries)

    async def list_recent(self, user_id: str, limit: int = 50) -> List[PrioritizedTask]:
        mine = [e for e in self.entries if e.user_id == user_id]
        return list(reversed(mine))[:limit]


class StaticTaskSource(TaskSource):
    def __init__(self, name: str, task_type: TaskType, tasks: List[Task] = None):
        self.name = name
        self.task_type = task_type
        self.tasks = tasks or []

    async def fetch_open(self, user_id: str) -> List[Task]:
        return list(self.tasks)


class FailingTaskSource(TaskSource):
    def __init__(self, name: str, task_type: TaskType):
        self.name = name
        self.task_type = task_type

    async def fetch_open(self, user_id: str) -> List[Task]:
        raise TaskSourceException(self.name, "connection refused")


class RecordingDispatcher(TrainingDispatcher):
    mode = "recording"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.dispatched: List[str] = []

    async def dispatch(self, user_id: str) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.dispatched.append(user_id)


def make_task(task_id: str, task_type: TaskType, created_at: datetime, urgency=None, **kwargs) -> Task:
    return Task(
        id=task_id,
        task_type=task_type,
        title=kwargs.pop("title", f"{task_type.value} {task_id}"),
        urgency=urgency,
        created_at=created_at,
        **kwargs,
    )


def make_interaction(user_id: str, task_type: TaskType, timestamp: datetime,
                     session_id: str = "session-1", **kwargs) -> TaskInteraction:
    return TaskInteraction(
        user_id=user_id,
        task_type=task_type,
        task_id=kwargs.pop("task_id", "1"),
        action=kwargs.pop("action", "completed"),
        session_id=session_id,
        timestamp=timestamp,
        **kwargs,
    )

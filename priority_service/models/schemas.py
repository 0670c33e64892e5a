# priority_service/models/schemas.py
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Enums
class TaskType(str, Enum):
    PENDING_ITEM = "pending_item"
    URGENT_CARE = "urgent_care"
    MEDICATION_REFILL = "medication_refill"
    MESSAGE = "message"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["Urgency"]:
        """Fold a collaborator's free-text priority label onto the enum"""
        if label is None:
            return None
        normalized = str(label).strip().lower()
        if normalized in ("high", "urgent", "critical", "emergency"):
            return cls.HIGH
        if normalized in ("medium", "normal", "moderate"):
            return cls.MEDIUM
        if normalized == "low":
            return cls.LOW
        return None


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"

    @classmethod
    def from_hour(cls, hour: int) -> "TimeOfDay":
        if hour < 12:
            return cls.MORNING
        if hour < 18:
            return cls.AFTERNOON
        return cls.EVENING


class TrainingStatus(str, Enum):
    TRAINED = "trained"
    NEEDS_MORE_DATA = "needs_more_data"
    SUPERSEDED = "superseded"


class ScoringStrategy(str, Enum):
    MODEL = "model"
    DEFAULT = "default"


SUGGESTED_ACTIONS: Dict[TaskType, str] = {
    TaskType.PENDING_ITEM: "Review and update status",
    TaskType.URGENT_CARE: "Assess and respond to urgent care request",
    TaskType.MEDICATION_REFILL: "Review and approve/deny medication refill",
    TaskType.MESSAGE: "Read and respond to message",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# Domain models
class TaskInteraction(CamelModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    task_type: TaskType
    task_id: str
    action: str
    session_id: str
    order_in_session: Optional[int] = None
    time_spent: Optional[float] = None  # seconds
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class PriorityModel(CamelModel):
    user_id: str
    model_version: int = Field(..., ge=1)
    task_type_weights: Dict[TaskType, float] = Field(default_factory=dict)
    urgency_weights: Dict[Urgency, float] = Field(default_factory=dict)
    time_pattern_weights: Dict[TaskType, Dict[TimeOfDay, float]] = Field(default_factory=dict)
    patient_factor_weights: Dict[str, float] = Field(default_factory=dict)
    active: bool = True
    accuracy: Optional[float] = None
    training_samples: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v):
        return ensure_utc(v)

    def task_type_weight(self, task_type: TaskType) -> float:
        return self.task_type_weights.get(task_type, 0.0)

    def urgency_weight(self, urgency: Optional[Urgency]) -> float:
        if urgency is None:
            return 0.0
        return self.urgency_weights.get(urgency, 0.0)

    def time_pattern_weight(self, task_type: TaskType, bucket: TimeOfDay) -> float:
        return self.time_pattern_weights.get(task_type, {}).get(bucket, 0.0)


class Task(CamelModel):
    id: str
    task_type: TaskType
    patient_id: Optional[str] = None
    title: str
    description: str = ""
    urgency: Optional[Urgency] = None
    created_at: datetime
    due_date: Optional[datetime] = None
    status: Optional[str] = None
    original_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v):
        return ensure_utc(v)


class ScoredTask(Task):
    priority_score: float = Field(..., ge=0, le=100)
    reasoning: Dict[str, Any] = Field(default_factory=dict)
    suggested_action: str
    model_version_used: Optional[int] = None


class PrioritizedTask(CamelModel):
    """Audit record of one scoring decision"""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    task_type: TaskType
    task_id: str
    priority_score: float = Field(..., ge=0, le=100)
    reasoning: Dict[str, Any] = Field(default_factory=dict)
    suggested_action: str
    model_version_used: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v):
        return ensure_utc(v)


class TrainingResult(CamelModel):
    user_id: str
    status: TrainingStatus
    interaction_count: int
    model: Optional[PriorityModel] = None

    @property
    def trained(self) -> bool:
        return self.status == TrainingStatus.TRAINED


class RecordResult(CamelModel):
    interaction: TaskInteraction
    interaction_count: int
    training_triggered: bool = False


class PrioritizationResult(CamelModel):
    user_id: str
    strategy: ScoringStrategy
    model_version: Optional[int] = None
    tasks: List[ScoredTask] = Field(default_factory=list)
    degraded_sources: List[str] = Field(default_factory=list)


# Request / response models
class RecordInteractionRequest(CamelModel):
    task_type: TaskType
    task_id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1, max_length=100)
    order_in_session: Optional[int] = Field(None, ge=0)
    time_spent: Optional[float] = Field(None, ge=0)
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("context", mode="before")
    @classmethod
    def default_context(cls, v):
        return v or {}


class RecordInteractionResponse(CamelModel):
    success: bool = True
    message: str = "Interaction recorded successfully"
    session_id: str
    interaction_count: int
    training_triggered: bool


class PrioritizedTasksResponse(CamelModel):
    success: bool = True
    strategy: ScoringStrategy
    model_version: Optional[int] = None
    tasks: List[ScoredTask]
    degraded_sources: List[str] = Field(default_factory=list)


class ModelInfoResponse(CamelModel):
    model_exists: bool
    model_version: int
    interaction_count: int
    model_created_at: Optional[datetime] = None
    accuracy: Optional[float] = None
    needs_more_data: bool


class TrainModelResponse(CamelModel):
    success: bool = True
    message: str
    model_version: int


class ModelHistoryResponse(CamelModel):
    models: List[PriorityModel]


class AuditTrailResponse(CamelModel):
    entries: List[PrioritizedTask]

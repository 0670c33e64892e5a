# priority_service/models/database.py
"""
SQLAlchemy models for the prioritization engine.

``EngineBase`` holds the tables this service owns and may create. ``SourceBase``
maps the collaborator tables the task sources read from; those belong to other
services and are never created or written here.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

EngineBase = declarative_base()
SourceBase = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class TaskInteractionRecord(EngineBase):
    __tablename__ = "task_interactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    task_type = Column(String(32), nullable=False)
    task_id = Column(String(64), nullable=False)
    action = Column(String(100), nullable=False)
    session_id = Column(String(36), nullable=False, index=True)
    order_in_session = Column(Integer, nullable=True)
    time_spent = Column(Float, nullable=True)  # seconds
    context = Column(JSONType, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_task_interactions_user_ts", "user_id", "timestamp"),
    )

    def __repr__(self):
        return f"<TaskInteractionRecord(user_id={self.user_id}, task={self.task_type}:{self.task_id})>"


class PriorityModelRecord(EngineBase):
    __tablename__ = "priority_models"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    model_version = Column(Integer, nullable=False)
    task_type_weights = Column(JSONType, nullable=False, default=dict)
    urgency_weights = Column(JSONType, nullable=False, default=dict)
    time_pattern_weights = Column(JSONType, nullable=False, default=dict)
    patient_factor_weights = Column(JSONType, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    accuracy = Column(Float, nullable=True)
    training_samples = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "model_version", name="uq_priority_models_user_version"),
        # At most one active model per user.
        Index(
            "uq_priority_models_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    def __repr__(self):
        return f"<PriorityModelRecord(user_id={self.user_id}, v={self.model_version}, active={self.active})>"


class PrioritizedTaskRecord(EngineBase):
    __tablename__ = "prioritized_tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False)
    task_type = Column(String(32), nullable=False)
    task_id = Column(String(64), nullable=False)
    priority_score = Column(Float, nullable=False)
    reasoning = Column(JSONType, nullable=False, default=dict)
    suggested_action = Column(Text, nullable=False)
    model_version_used = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_prioritized_tasks_user_created", "user_id", "created_at"),
    )


# Collaborator tables (read-only)
class PendingItem(SourceBase):
    __tablename__ = "pending_items"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=True)
    type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(String, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False)


class UrgentCareRequest(SourceBase):
    __tablename__ = "urgent_care_requests"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=True)
    request_type = Column(String, nullable=False)
    problem_description = Column(Text, nullable=False)
    priority = Column(String, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False)


class MedicationRefill(SourceBase):
    __tablename__ = "medication_refills"

    id = Column(Integer, primary_key=True)
    patient_name = Column(String, nullable=False)
    medication_name = Column(String, nullable=False)
    date_received = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False)


class Message(SourceBase):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False)
    sender_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=True)
    is_from_patient = Column(Boolean, nullable=False)
    attachment_url = Column(Text, nullable=True)
    spruce_message_id = Column(Text, nullable=True)

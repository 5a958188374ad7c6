"""
Database Models for the Autonomy Governor
=========================================

SQLAlchemy models for tenants, task records, transition history, escalation
rules and shadow-mode data.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class TenantModel(Base):
    """A tenant and its current autonomy level."""
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    level: Mapped[int] = mapped_column(Integer)  # AutonomyLevel value
    level_since: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TaskModel(Base):
    """A unit of agent work, read by the metrics window."""
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    task_type: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, completed, rejected, failed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    escalation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # NULL when the task does not track a candidate response
    response_received: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_complaint: Mapped[bool] = mapped_column(Boolean, default=False)


class AutonomyTransitionModel(Base):
    """Append-only audit log of level changes."""
    __tablename__ = "autonomy_transitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    from_level: Mapped[int] = mapped_column(Integer)
    to_level: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(Text)
    initiated_by: Mapped[str] = mapped_column(String(20))  # system, operator
    approved_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class EscalationRuleModel(Base):
    """Custom escalation rules added at runtime."""
    __tablename__ = "escalation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text)
    condition: Mapped[Dict[str, Any]] = mapped_column(JSON)
    action: Mapped[str] = mapped_column(String(20), default="require_approval")
    override_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ShadowSessionModel(Base):
    __tablename__ = "shadow_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, paused, completed
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stats: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)


class CapturedInteractionModel(Base):
    __tablename__ = "captured_interactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(50))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    context: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    human_action: Mapped[Dict[str, Any]] = mapped_column(JSON)
    alternative: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    comparison: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Denormalized from `comparison` for aggregate queries
    similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_match: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class ShadowLearningModel(Base):
    __tablename__ = "shadow_learnings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    interaction_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    patterns: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    guideline_updates: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GuidelineUpdateModel(Base):
    """Proposed guideline changes awaiting human review."""
    __tablename__ = "guideline_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    learning_id: Mapped[str] = mapped_column(String(36), index=True)
    type: Mapped[str] = mapped_column(String(20))  # workflow, template, constraint
    path: Mapped[str] = mapped_column(String(255))
    reason: Mapped[str] = mapped_column(Text)
    suggested_change: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending_review")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

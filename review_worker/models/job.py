"""
Job queue model.

One row per unit of asynchronous work. Producers insert rows with
status "pending"; the worker moves them to "processing" and then to
"completed" or "failed".
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from review_worker.db.base import Base
from review_worker.utils.time import utc_now

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite); None is stored as SQL NULL
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class JobType(str, enum.Enum):
    AI_GENERATION = "ai_generation"
    REVIEW_PROCESSING = "review_processing"
    PROMPT_ANALYSIS = "prompt_analysis"
    SENTIMENT_ANALYSIS = "sentiment_analysis"


class Job(Base):
    """A queued job row shared between producers and workers."""

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owning user; opaque to the worker
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.PENDING.value)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Present in the schema but not incremented by the worker
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        # Claim query: oldest pending row first
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Job id={self.id} type={self.job_type} status={self.status}>"

from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column
from metamirror.db.session import Base


class RunCheckpoint(Base):
    __tablename__ = "run_checkpoints"

    run_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    phase: Mapped[str] = mapped_column(String(32), default="INIT", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="QUEUED", nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

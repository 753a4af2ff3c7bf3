"""dependency_cache_keys table — per-dependency resolution bookkeeping."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from depsentinel.core.database import Base, TimestampMixin


class DependencyCacheKey(TimestampMixin, Base):
    __tablename__ = "dependency_cache_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_state_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("repository_states.id", ondelete="CASCADE"),
        nullable=False,
    )
    ecosystem: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    manifest_path: Mapped[str] = mapped_column(Text, nullable=False)
    cache_key: Mapped[str] = mapped_column(Text, nullable=False)
    current_version: Mapped[Optional[str]] = mapped_column(Text)
    latest_version: Mapped[Optional[str]] = mapped_column(Text)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint(
            "repository_state_id", "ecosystem", "name", "manifest_path",
            name="uq_depcache_repo_identity",
        ),
        Index("idx_depcache_repo", "repository_state_id"),
    )

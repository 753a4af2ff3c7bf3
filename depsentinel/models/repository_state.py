"""repository_states table."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from depsentinel.core.database import Base, TimestampMixin


class OnboardingStatus(str, enum.Enum):
    UNSCANNED = "unscanned"
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    DISABLED = "disabled"


class RepositoryState(TimestampMixin, Base):
    __tablename__ = "repository_states"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    repository: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    platform: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'github'")
    )
    status: Mapped[OnboardingStatus] = mapped_column(
        Enum(
            OnboardingStatus,
            name="onboarding_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=OnboardingStatus.UNSCANNED,
    )
    onboarding_branch: Mapped[Optional[str]] = mapped_column(Text)
    onboarding_proposal_number: Mapped[Optional[int]] = mapped_column()
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_run_status: Mapped[Optional[str]] = mapped_column(Text)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

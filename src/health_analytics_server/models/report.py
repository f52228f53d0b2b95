"""Health report snapshot model."""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class ReportType(str, Enum):
    """Report presets."""

    WEEKLY_SUMMARY = "weekly_summary"
    MONTHLY_PROGRESS = "monthly_progress"
    QUARTERLY_REVIEW = "quarterly_review"
    ANNUAL_JOURNEY = "annual_journey"


class AccessLevel(str, Enum):
    """Who may read a report."""

    PRIVATE = "private"
    SHARED = "shared"


class HealthReport(Base, UserScopedMixin, TimestampMixin):
    """Write-once report snapshot for a period.

    The data column holds {summary, trends, achievements, recommendations}.
    """

    __tablename__ = "health_reports"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "report_type", "period_start", "period_end", name="uq_user_report_period"
        ),
        {"comment": "Immutable health report snapshots"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    report_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="summary, trends, achievements, recommendations",
    )
    access_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AccessLevel.PRIVATE.value,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthReport(user_id={self.user_id}, type={self.report_type}, "
            f"period={self.period_start}..{self.period_end})>"
        )

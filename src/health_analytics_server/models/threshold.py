"""Per-user alert threshold configuration."""

from sqlalchemy import Boolean, Float, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class AlertThresholdConfig(Base, UserScopedMixin, TimestampMixin):
    """Stored alert bounds for one metric of one user.

    Applied to every monitoring session the user starts, between the
    built-in defaults and thresholds sent with the session request. A
    disabled row switches alerting off for that metric.
    """

    __tablename__ = "alert_threshold_configs"
    __table_args__ = (
        UniqueConstraint("user_id", "metric_type", name="uq_alert_threshold_user_metric"),
        {"comment": "Per-user alert thresholds for live monitoring"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)
    min_value: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        comment="Alert below this value (None = no lower bound)",
    )
    max_value: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        comment="Alert above this value (None = no upper bound)",
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<AlertThresholdConfig(user_id={self.user_id}, metric={self.metric_type}, "
            f"min={self.min_value}, max={self.max_value}, enabled={self.enabled})>"
        )

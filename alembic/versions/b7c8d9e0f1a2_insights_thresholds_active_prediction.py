"""Insights, alert thresholds and one active prediction per type

- health_insights: derived findings with read and bookmark flags
- alert_threshold_configs: per-user monitoring thresholds
- uq_predictions_one_active: partial unique index over active predictions

Revision ID: b7c8d9e0f1a2
Revises: a1b2c3d4e5f6
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "b7c8d9e0f1a2"
down_revision: str | Sequence[str] | None = "a1b2c3d4e5f6"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _common_columns() -> list[sa.Column]:
    """id, user_id and the TimestampMixin columns."""
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "health_insights",
        *_common_columns(),
        sa.Column("insight_type", sa.String(length=20), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("action_items", sa.JSON(), nullable=False),
        sa.Column("related_metrics", sa.JSON(), nullable=False),
        sa.Column("source_key", sa.String(length=120), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("is_bookmarked", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "source_key", name="uq_health_insight_source"),
        comment="Derived insights with read and bookmark flags",
    )
    op.create_index(
        op.f("ix_health_insights_user_id"), "health_insights", ["user_id"], unique=False
    )
    op.create_index(
        "ix_health_insights_user_read", "health_insights", ["user_id", "is_read"], unique=False
    )

    op.create_table(
        "alert_threshold_configs",
        *_common_columns(),
        sa.Column("metric_type", sa.String(length=50), nullable=False),
        sa.Column("min_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Float(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "metric_type", name="uq_alert_threshold_user_metric"),
        comment="Per-user alert thresholds for live monitoring",
    )
    op.create_index(
        op.f("ix_alert_threshold_configs_user_id"),
        "alert_threshold_configs",
        ["user_id"],
        unique=False,
    )

    # Keep only the newest active row per (user, type)
    op.execute(
        """
        UPDATE predictions SET is_active = false
        WHERE is_active AND id NOT IN (
            SELECT DISTINCT ON (user_id, prediction_type) id
            FROM predictions
            WHERE is_active
            ORDER BY user_id, prediction_type, created_at DESC
        )
        """
    )
    op.create_index(
        "uq_predictions_one_active",
        "predictions",
        ["user_id", "prediction_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("uq_predictions_one_active", table_name="predictions")
    op.drop_index(
        op.f("ix_alert_threshold_configs_user_id"), table_name="alert_threshold_configs"
    )
    op.drop_table("alert_threshold_configs")
    op.drop_index("ix_health_insights_user_read", table_name="health_insights")
    op.drop_index(op.f("ix_health_insights_user_id"), table_name="health_insights")
    op.drop_table("health_insights")

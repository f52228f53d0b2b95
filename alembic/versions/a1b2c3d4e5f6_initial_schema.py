"""Initial schema

Creates the analytics tables:
- health_metrics, meal_logs, workout_logs, sleep_logs (raw data)
- health_scores, predictions, pattern_analyses, health_reports (derived)
- health_goals

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: str | Sequence[str] | None = None
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
        "health_metrics",
        *_common_columns(),
        sa.Column("metric_type", sa.String(length=50), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        comment="Append-only per-user health metric time series",
    )
    op.create_index(
        op.f("ix_health_metrics_user_id"), "health_metrics", ["user_id"], unique=False
    )
    op.create_index(
        "ix_health_metrics_user_type_ts",
        "health_metrics",
        ["user_id", "metric_type", "timestamp"],
        unique=False,
    )

    op.create_table(
        "meal_logs",
        *_common_columns(),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("calories", sa.Float(), nullable=False),
        sa.Column("protein_g", sa.Float(), nullable=False),
        sa.Column("carbs_g", sa.Float(), nullable=False),
        sa.Column("fat_g", sa.Float(), nullable=False),
        sa.Column("food_category", sa.String(length=50), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_meal_logs_user_id"), "meal_logs", ["user_id"], unique=False)
    op.create_index(
        "ix_meal_logs_user_logged_at", "meal_logs", ["user_id", "logged_at"], unique=False
    )

    op.create_table(
        "workout_logs",
        *_common_columns(),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("calories_burned", sa.Float(), nullable=False),
        sa.Column("intensity", sa.String(length=20), nullable=False),
        sa.Column("consistency_score", sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_workout_logs_user_id"), "workout_logs", ["user_id"], unique=False)
    op.create_index(
        "ix_workout_logs_user_logged_at", "workout_logs", ["user_id", "logged_at"], unique=False
    )

    op.create_table(
        "sleep_logs",
        *_common_columns(),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_hours", sa.Float(), nullable=False),
        sa.Column("quality_score", sa.Float(), nullable=False),
        sa.Column("deep_sleep_ratio", sa.Float(), nullable=False),
        sa.Column("consistency", sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sleep_logs_user_id"), "sleep_logs", ["user_id"], unique=False)
    op.create_index(
        "ix_sleep_logs_user_logged_at", "sleep_logs", ["user_id", "logged_at"], unique=False
    )

    op.create_table(
        "health_scores",
        *_common_columns(),
        sa.Column("score_type", sa.String(length=20), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("calculation_date", sa.Date(), nullable=False),
        sa.Column("trend", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "score_type", "calculation_date", name="uq_user_score_type_date"
        ),
        comment="Daily composite health scores (one row per user/type/day)",
    )
    op.create_index(op.f("ix_health_scores_user_id"), "health_scores", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_health_scores_score_type"), "health_scores", ["score_type"], unique=False
    )
    op.create_index(
        op.f("ix_health_scores_calculation_date"),
        "health_scores",
        ["calculation_date"],
        unique=False,
    )

    op.create_table(
        "predictions",
        *_common_columns(),
        sa.Column("prediction_type", sa.String(length=50), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("predicted_value", sa.Float(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("model_version", sa.String(length=20), nullable=False),
        sa.Column("low_quality", sa.Boolean(), nullable=False),
        sa.Column("input_summary", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_predictions_user_id"), "predictions", ["user_id"], unique=False)
    op.create_index(op.f("ix_predictions_is_active"), "predictions", ["is_active"], unique=False)
    op.create_index(
        "ix_predictions_user_type_active",
        "predictions",
        ["user_id", "prediction_type", "is_active"],
        unique=False,
    )

    op.create_table(
        "pattern_analyses",
        *_common_columns(),
        sa.Column("pattern_type", sa.String(length=50), nullable=False),
        sa.Column("analysis_period", sa.String(length=20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("correlation_score", sa.Float(), nullable=False),
        sa.Column("significance", sa.String(length=20), nullable=False),
        sa.Column("sample_count", sa.Integer(), nullable=False),
        sa.Column("metrics_involved", sa.JSON(), nullable=False),
        sa.Column("insights", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "pattern_type",
            "analysis_period",
            "start_date",
            "end_date",
            name="uq_user_pattern_window",
        ),
    )
    op.create_index(
        op.f("ix_pattern_analyses_user_id"), "pattern_analyses", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_pattern_analyses_pattern_type"),
        "pattern_analyses",
        ["pattern_type"],
        unique=False,
    )

    op.create_table(
        "health_reports",
        *_common_columns(),
        sa.Column("report_type", sa.String(length=30), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("access_level", sa.String(length=20), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "report_type", "period_start", "period_end", name="uq_user_report_period"
        ),
        comment="Immutable health report snapshots",
    )
    op.create_index(
        op.f("ix_health_reports_user_id"), "health_reports", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_health_reports_report_type"), "health_reports", ["report_type"], unique=False
    )

    op.create_table(
        "health_goals",
        *_common_columns(),
        sa.Column("goal_type", sa.String(length=50), nullable=False),
        sa.Column("target_value", sa.Float(), nullable=False),
        sa.Column("current_value", sa.Float(), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("deadline_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("progress_percentage", sa.Float(), nullable=False),
        sa.Column("achievement_probability", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("milestones", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        comment="User health goals and progress",
    )
    op.create_index(op.f("ix_health_goals_user_id"), "health_goals", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_health_goals_target_date"), "health_goals", ["target_date"], unique=False
    )
    op.create_index(op.f("ix_health_goals_status"), "health_goals", ["status"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "health_goals",
        "health_reports",
        "pattern_analyses",
        "predictions",
        "health_scores",
        "sleep_logs",
        "workout_logs",
        "meal_logs",
        "health_metrics",
    ):
        op.drop_table(table)

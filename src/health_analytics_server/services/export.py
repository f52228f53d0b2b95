"""User data export in JSON, CSV or PDF.

All three formats are rendered from the same payload:

    {
        "user_id": ..., "export_type": ..., "exported_at": ...,
        "records": {"health_scores": [...], "predictions": [...], ...}
    }
"""

import csv
import io
import json
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

import structlog
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.base import Base
from health_analytics_server.models.goal import HealthGoal
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.models.report import HealthReport
from health_analytics_server.models.score import HealthScore

logger = structlog.get_logger()

# Columns shown in the PDF tables (the full record is in JSON/CSV)
PDF_COLUMNS: dict[str, list[str]] = {
    "health_scores": ["calculation_date", "score_type", "value", "trend", "confidence"],
    "predictions": [
        "prediction_type",
        "target_date",
        "predicted_value",
        "confidence_score",
        "is_active",
    ],
    "reports": ["report_type", "period_start", "period_end", "created_at"],
    "goals": ["goal_type", "target_value", "current_value", "progress_percentage", "status"],
}
PDF_ROW_LIMIT = 200


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "json"
    CSV = "csv"
    PDF = "pdf"


class ExportType(str, Enum):
    """Which records to export."""

    HEALTH_SCORES = "health_scores"
    PREDICTIONS = "predictions"
    REPORTS = "reports"
    GOALS = "goals"
    ALL = "all"


MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.PDF: "application/pdf",
}


@dataclass
class ExportResult:
    """Rendered export ready to send."""

    content: bytes
    media_type: str
    filename: str
    record_count: int


def to_jsonable(value: Any) -> Any:
    """Convert dates, datetimes and enums to JSON-friendly values."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def model_to_dict(obj: Base) -> dict[str, Any]:
    """Plain dict of a model's mapped columns."""
    return {
        attr.key: to_jsonable(getattr(obj, attr.key)) for attr in inspect(obj).mapper.column_attrs
    }


def render_json(payload: dict[str, Any]) -> bytes:
    """Indented structural dump."""
    return json.dumps(payload, indent=2, default=str).encode("utf-8")


def render_csv(payload: dict[str, Any]) -> bytes:
    """Header row plus one row per record.

    Strings are quoted and nested values are JSON-encoded into one cell.
    With more than one record type a leading record_type column is added
    over the union of all fields.
    """
    records: dict[str, list[dict[str, Any]]] = payload["records"]
    multi = len(records) > 1

    fields: list[str] = []
    for rows in records.values():
        for row in rows:
            for key in row:
                if key not in fields:
                    fields.append(key)
    header = ["record_type", *fields] if multi else fields

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_NONNUMERIC)
    writer.writerow(header)
    for record_type, rows in records.items():
        for row in rows:
            cells = [_csv_cell(row.get(key)) for key in fields]
            writer.writerow([record_type, *cells] if multi else cells)
    return output.getvalue().encode("utf-8")


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, dict | list):
        return json.dumps(value, default=str, sort_keys=True)
    return value


def render_pdf(payload: dict[str, Any]) -> bytes:
    """Tabular PDF summary of the export."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=1.5 * cm,
        leftMargin=1.5 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title=f"Health data export for {payload['user_id']}",
    )
    styles = getSampleStyleSheet()

    story: list[Any] = [
        Paragraph("Health Data Export", styles["Title"]),
        Paragraph(
            f"User: {payload['user_id']} &nbsp; Type: {payload['export_type']} "
            f"&nbsp; Exported: {payload['exported_at']}",
            styles["Normal"],
        ),
        Spacer(1, 0.5 * cm),
    ]

    for record_type, rows in payload["records"].items():
        story.append(Paragraph(record_type.replace("_", " ").title(), styles["Heading2"]))
        if not rows:
            story.append(Paragraph("No records.", styles["Italic"]))
            story.append(Spacer(1, 0.3 * cm))
            continue

        columns = PDF_COLUMNS.get(record_type) or list(rows[0].keys())
        data = [columns]
        data.extend([_pdf_cell(row.get(c)) for c in columns] for row in rows[:PDF_ROW_LIMIT])
        table = Table(data, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#ecf0f1")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor("#2c3e50")),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            )
        )
        story.append(table)
        if len(rows) > PDF_ROW_LIMIT:
            story.append(
                Paragraph(
                    f"Showing {PDF_ROW_LIMIT} of {len(rows)} records; "
                    "use the JSON or CSV export for the full set.",
                    styles["Italic"],
                )
            )
        story.append(Spacer(1, 0.5 * cm))

    doc.build(story)
    content = buffer.getvalue()
    buffer.close()
    return content


def _pdf_cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


class ExportService:
    """Collects a user's analytics records and renders them.

    Args:
        session: Database session
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service="export")

    async def export_user_data(
        self,
        user_id: str,
        fmt: str,
        export_type: str = ExportType.ALL.value,
        start: date | None = None,
        end: date | None = None,
    ) -> ExportResult:
        """Export a user's records.

        Args:
            user_id: User identifier
            fmt: json, csv or pdf
            export_type: health_scores, predictions, reports, goals or all
            start: Optional inclusive start date
            end: Optional inclusive end date

        Returns:
            Rendered export

        Raises:
            InvalidInputError: If the format, export type or date range is invalid
        """
        try:
            export_format = ExportFormat(fmt)
        except ValueError:
            raise InvalidInputError(
                f"Unsupported export format '{fmt}'",
                details={"valid_formats": [f.value for f in ExportFormat]},
            ) from None
        try:
            kind = ExportType(export_type)
        except ValueError:
            raise InvalidInputError(
                f"Unsupported export type '{export_type}'",
                details={"valid_types": [t.value for t in ExportType]},
            ) from None
        if start and end and start > end:
            raise InvalidInputError("start must not be after end")

        payload = await self.build_payload(user_id, kind, start, end)
        if export_format == ExportFormat.JSON:
            content = render_json(payload)
        elif export_format == ExportFormat.CSV:
            content = render_csv(payload)
        else:
            content = render_pdf(payload)

        record_count = sum(len(rows) for rows in payload["records"].values())
        self.logger.info(
            "User data exported",
            user_id=user_id,
            format=export_format.value,
            export_type=kind.value,
            records=record_count,
        )
        return ExportResult(
            content=content,
            media_type=MEDIA_TYPES[export_format],
            filename=f"health_export_{user_id}_{kind.value}.{export_format.value}",
            record_count=record_count,
        )

    async def build_payload(
        self,
        user_id: str,
        kind: ExportType,
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, Any]:
        """Collect the records for an export."""
        kinds = (
            [k for k in ExportType if k != ExportType.ALL] if kind == ExportType.ALL else [kind]
        )
        records = {k.value: await self._records(user_id, k, start, end) for k in kinds}
        return {
            "user_id": user_id,
            "export_type": kind.value,
            "exported_at": datetime.now(UTC).isoformat(),
            "period": {
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
            "records": records,
        }

    async def _records(
        self, user_id: str, kind: ExportType, start: date | None, end: date | None
    ) -> list[dict[str, Any]]:
        if kind == ExportType.HEALTH_SCORES:
            stmt = select(HealthScore).where(HealthScore.user_id == user_id)
            if start:
                stmt = stmt.where(HealthScore.calculation_date >= start)
            if end:
                stmt = stmt.where(HealthScore.calculation_date <= end)
            stmt = stmt.order_by(HealthScore.calculation_date.asc(), HealthScore.score_type.asc())
        else:
            model: Any = {
                ExportType.PREDICTIONS: Prediction,
                ExportType.REPORTS: HealthReport,
                ExportType.GOALS: HealthGoal,
            }[kind]
            stmt = select(model).where(model.user_id == user_id)
            if start:
                stmt = stmt.where(model.created_at >= datetime.combine(start, time.min, tzinfo=UTC))
            if end:
                stmt = stmt.where(model.created_at <= datetime.combine(end, time.max, tzinfo=UTC))
            stmt = stmt.order_by(model.created_at.asc())

        result = await self.session.execute(stmt)
        return [model_to_dict(row) for row in result.scalars().all()]

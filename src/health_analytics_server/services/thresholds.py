"""Per-user alert threshold configuration."""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import ConflictError, NotFoundError
from health_analytics_server.models.threshold import AlertThresholdConfig
from health_analytics_server.monitoring.session import AlertThreshold
from health_analytics_server.services.metric_store import parse_metric_type

logger = structlog.get_logger()


class ThresholdService:
    """CRUD for stored alert thresholds, plus the view sessions start from."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service="thresholds")

    async def list_thresholds(self, user_id: str) -> list[AlertThresholdConfig]:
        """A user's stored thresholds ordered by metric."""
        stmt = (
            select(AlertThresholdConfig)
            .where(AlertThresholdConfig.user_id == user_id)
            .order_by(AlertThresholdConfig.metric_type.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_threshold(self, user_id: str, metric_type: str) -> AlertThresholdConfig:
        """Get one stored threshold.

        Raises:
            InvalidInputError: If the metric type is unknown
            NotFoundError: If the user has no threshold for the metric
        """
        metric = parse_metric_type(metric_type).value
        config = await self._find(user_id, metric)
        if config is None:
            raise NotFoundError(
                f"No alert threshold configured for '{metric}'",
                details={"metric_type": metric},
            )
        return config

    async def set_threshold(
        self,
        user_id: str,
        metric_type: str,
        min_value: float | None = None,
        max_value: float | None = None,
        enabled: bool = True,
    ) -> AlertThresholdConfig:
        """Create or replace the threshold for one metric.

        Raises:
            InvalidInputError: If the metric is unknown or the bounds are invalid
            ConflictError: If another request created the row concurrently
        """
        metric = parse_metric_type(metric_type).value
        AlertThreshold(min=min_value, max=max_value)

        config = await self._find(user_id, metric)
        if config is None:
            config = AlertThresholdConfig(user_id=user_id, metric_type=metric)
            self.session.add(config)
        config.min_value = min_value
        config.max_value = max_value
        config.enabled = enabled

        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                "Threshold was changed concurrently; retry the request",
                details={"metric_type": metric},
            ) from e

        self.logger.info(
            "Alert threshold saved",
            user_id=user_id,
            metric_type=metric,
            min=min_value,
            max=max_value,
            enabled=enabled,
        )
        return config

    async def delete_threshold(self, user_id: str, metric_type: str) -> None:
        """Remove a stored threshold; sessions fall back to the defaults.

        Raises:
            NotFoundError: If the user has no threshold for the metric
        """
        config = await self.get_threshold(user_id, metric_type)
        await self.session.delete(config)
        await self.session.commit()
        self.logger.info("Alert threshold deleted", user_id=user_id, metric_type=config.metric_type)

    async def session_thresholds(self, user_id: str) -> dict[str, AlertThreshold | None]:
        """Stored thresholds as applied to a new session.

        Returns:
            Mapping of metric to its bounds; None marks a metric whose
            alerting the user switched off
        """
        return {
            c.metric_type: AlertThreshold(min=c.min_value, max=c.max_value) if c.enabled else None
            for c in await self.list_thresholds(user_id)
        }

    async def _find(self, user_id: str, metric_type: str) -> AlertThresholdConfig | None:
        stmt = select(AlertThresholdConfig).where(
            AlertThresholdConfig.user_id == user_id,
            AlertThresholdConfig.metric_type == metric_type,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

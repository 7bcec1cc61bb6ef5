"""
代理指标历史存储 (Proxy Metric History Store)

负责聚合结果的持久化、历史查询、按保留天数清理和趋势分桶计算。
记录只追加，写入后不修改。
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.models.proxy_metric import ProxyMetric
from app.services.aggregator import ServiceAggregate

logger = logging.getLogger(__name__)

# 趋势周期对应的回看窗口
PERIOD_WINDOWS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
}

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass
class TrendSeries:
    """趋势图数据，各数组与 labels 一一对应。"""
    period: str
    labels: list[str] = field(default_factory=list)
    requests_total: list[int] = field(default_factory=list)
    avg_latency: list[float] = field(default_factory=list)
    errors_4xx: list[int] = field(default_factory=list)
    errors_5xx: list[int] = field(default_factory=list)


def as_utc(value: datetime) -> datetime:
    """数据库返回的无时区时间按 UTC 处理。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def bucket_label(collected_at: datetime, period: str) -> str:
    """计算记录所属的时间桶标签（UTC）。"""
    ts = as_utc(collected_at)
    if period == "hour":
        return f"{ts.hour:02d}:{ts.minute - ts.minute % 5:02d}"
    if period == "day":
        return f"{ts.hour:02d}:00"
    return WEEKDAYS[ts.weekday()]


class MetricsStore:
    """代理指标存储服务"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, aggregates: Iterable[ServiceAggregate]) -> int:
        """写入一批聚合记录，返回写入条数。调用方负责 commit。"""
        rows = [
            ProxyMetric(
                service_name=agg.service_name,
                requests_total=agg.requests_total,
                requests_per_second=agg.requests_per_second,
                avg_latency_ms=agg.avg_latency_ms,
                errors_4xx=agg.errors_4xx,
                errors_5xx=agg.errors_5xx,
                open_connections=agg.open_connections,
                collected_at=agg.collected_at or datetime.now(timezone.utc),
            )
            for agg in aggregates
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return len(rows)

    async def query(
        self,
        service_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[ProxyMetric]:
        """按条件查询历史记录，最新的在前。"""
        q = select(ProxyMetric)
        if service_name:
            q = q.where(ProxyMetric.service_name == service_name)
        if start:
            q = q.where(ProxyMetric.collected_at >= start)
        if end:
            q = q.where(ProxyMetric.collected_at <= end)
        q = q.order_by(ProxyMetric.collected_at.desc(), ProxyMetric.id.desc()).limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def latest_per_service(self, service_names: Optional[Iterable[str]] = None) -> dict[str, ProxyMetric]:
        """每个服务最近一条记录，以服务名为键。"""
        latest_ids = select(func.max(ProxyMetric.id)).group_by(ProxyMetric.service_name)
        if service_names is not None:
            names = list(service_names)
            if not names:
                return {}
            latest_ids = latest_ids.where(ProxyMetric.service_name.in_(names))
        result = await self.db.execute(select(ProxyMetric).where(ProxyMetric.id.in_(latest_ids)))
        return {row.service_name: row for row in result.scalars().all()}

    async def prune_older_than(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """删除 collected_at 早于保留期的记录，返回删除条数。调用方负责 commit。"""
        if retention_days < 0:
            raise ValidationError("retention_days must be non-negative")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        result = await self.db.execute(
            delete(ProxyMetric).where(ProxyMetric.collected_at < cutoff)
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Proxy metric cleanup: deleted %d rows older than %d days", deleted, retention_days)
        return deleted

    async def trend(
        self,
        service_name: Optional[str] = None,
        period: str = "day",
        now: Optional[datetime] = None,
    ) -> TrendSeries:
        """
        计算趋势分桶。

        只取窗口内的记录，按时间升序分桶：计数器求和，延迟取平均。
        桶顺序为首次出现顺序，没有数据的桶不输出。
        """
        window = PERIOD_WINDOWS.get(period)
        if window is None:
            raise ValidationError(f"Unsupported period: {period}", detail="expected hour, day or week")

        since = (now or datetime.now(timezone.utc)) - window
        q = select(ProxyMetric).where(ProxyMetric.collected_at >= since)
        if service_name:
            q = q.where(ProxyMetric.service_name == service_name)
        q = q.order_by(ProxyMetric.collected_at.asc(), ProxyMetric.id.asc())
        rows = (await self.db.execute(q)).scalars().all()

        buckets: dict[str, dict] = {}
        for row in rows:
            label = bucket_label(row.collected_at, period)
            bucket = buckets.setdefault(
                label, {"requests": 0, "latency_sum": 0, "count": 0, "errors_4xx": 0, "errors_5xx": 0}
            )
            bucket["requests"] += row.requests_total
            bucket["latency_sum"] += row.avg_latency_ms
            bucket["count"] += 1
            bucket["errors_4xx"] += row.errors_4xx
            bucket["errors_5xx"] += row.errors_5xx

        series = TrendSeries(period=period)
        for label, bucket in buckets.items():
            series.labels.append(label)
            series.requests_total.append(bucket["requests"])
            series.avg_latency.append(round(bucket["latency_sum"] / bucket["count"], 2))
            series.errors_4xx.append(bucket["errors_4xx"])
            series.errors_5xx.append(bucket["errors_5xx"])
        return series

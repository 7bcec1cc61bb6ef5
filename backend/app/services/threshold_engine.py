"""
阈值规则引擎 (Threshold Rule Engine)

每轮采集后，用最新的服务聚合评估所有已启用的阈值规则：
冷却期检查 → 确定候选服务 → 计算指标值 → 比较 → 创建告警并分发通知。
单个 (规则, 服务) 组合出错只记录日志，不影响其余组合。
"""
import logging
import math
import operator as op
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.models.alert import Alert, AlertThreshold
from app.services.metrics_store import MetricsStore, as_utc

logger = logging.getLogger(__name__)


def _eq(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)


# 支持的比较运算符映射
OPERATORS = {
    "gt": op.gt,
    "lt": op.lt,
    "gte": op.ge,
    "lte": op.le,
    "eq": _eq,
}

OPERATOR_SYMBOLS = {"gt": ">", "lt": "<", "gte": ">=", "lte": "<=", "eq": "=="}

METRIC_LABELS = {
    "errors_4xx_rate": "4xx error rate",
    "errors_5xx_rate": "5xx error rate",
    "error_total_rate": "total error rate",
    "latency_avg": "average latency",
    "requests_per_second": "requests per second",
}

METRIC_UNITS = {
    "errors_4xx_rate": "%",
    "errors_5xx_rate": "%",
    "error_total_rate": "%",
    "latency_avg": " ms",
    "requests_per_second": " req/s",
}

CRITICAL_METRICS = {"errors_5xx_rate", "error_total_rate"}


def _rate(count: float, total: float) -> float:
    if not total:
        return 0.0
    return count / total * 100


def compute_value(metric_type: str, aggregate) -> float:
    """按指标类型计算当前值；错误率为占总请求数的百分比。"""
    if metric_type == "errors_4xx_rate":
        return _rate(aggregate.errors_4xx, aggregate.requests_total)
    if metric_type == "errors_5xx_rate":
        return _rate(aggregate.errors_5xx, aggregate.requests_total)
    if metric_type == "error_total_rate":
        return _rate(aggregate.errors_4xx + aggregate.errors_5xx, aggregate.requests_total)
    if metric_type == "latency_avg":
        return float(aggregate.avg_latency_ms)
    if metric_type == "requests_per_second":
        return float(aggregate.requests_per_second or 0.0)
    raise ValidationError(f"Unknown metric type: {metric_type}")


def compare(operator: str, current: float, threshold: float) -> bool:
    fn = OPERATORS.get(operator)
    if fn is None:
        raise ValidationError(f"Unknown operator: {operator}")
    return fn(current, threshold)


def severity_for(metric_type: str) -> str:
    return "critical" if metric_type in CRITICAL_METRICS else "warning"


def in_cooldown(threshold: AlertThreshold, now: datetime) -> bool:
    """距上次触发不足 cooldown_minutes 时返回 True。"""
    if threshold.last_triggered_at is None:
        return False
    elapsed = now - as_utc(threshold.last_triggered_at)
    return elapsed < timedelta(minutes=threshold.cooldown_minutes)


def build_message(threshold: AlertThreshold, service_name: str, value: float) -> str:
    unit = METRIC_UNITS.get(threshold.metric_type, "")
    label = METRIC_LABELS.get(threshold.metric_type, threshold.metric_type)
    symbol = OPERATOR_SYMBOLS.get(threshold.operator, threshold.operator)
    return (
        f"{threshold.name}: {label} for service {service_name} is {value:.2f}{unit} "
        f"({symbol} {threshold.threshold_value:.2f}{unit})"
    )


class ThresholdEngine:
    """阈值规则评估服务"""

    def __init__(self, db: AsyncSession, dispatcher=None):
        self.db = db
        self.dispatcher = dispatcher

    async def load_enabled_thresholds(self) -> list[AlertThreshold]:
        result = await self.db.execute(
            select(AlertThreshold)
            .where(AlertThreshold.is_enabled == True)  # noqa: E712
            .order_by(AlertThreshold.id)
        )
        return list(result.scalars().all())

    async def evaluate(self, aggregates: Iterable, now: Optional[datetime] = None) -> list[Alert]:
        """
        评估所有已启用规则，返回本轮新建的告警。

        aggregates 中的对象需有 service_name 以及各计数字段，
        ServiceAggregate 和 ProxyMetric 行都可以。调用方负责 commit。
        """
        now = now or datetime.now(timezone.utc)
        by_service = {agg.service_name: agg for agg in aggregates}
        thresholds = await self.load_enabled_thresholds()
        created: list[Alert] = []

        for threshold in thresholds:
            if in_cooldown(threshold, now):
                logger.debug("Threshold %s in cooldown, skipped", threshold.id)
                continue

            if threshold.service_name:
                if threshold.service_name not in by_service:
                    continue
                candidates = [threshold.service_name]
            else:
                candidates = list(by_service)

            for service_name in candidates:
                try:
                    alert = await self._evaluate_pair(threshold, by_service[service_name], now)
                except Exception:
                    logger.exception(
                        "Threshold evaluation failed: threshold=%s service=%s", threshold.id, service_name
                    )
                    continue
                if alert is not None:
                    created.append(alert)

        return created

    async def _evaluate_pair(self, threshold: AlertThreshold, aggregate, now: datetime) -> Optional[Alert]:
        """评估单条规则在单个服务上是否触发。"""
        value = compute_value(threshold.metric_type, aggregate)
        if not compare(threshold.operator, value, threshold.threshold_value):
            return None

        alert = Alert(
            threshold_id=threshold.id,
            service_name=aggregate.service_name,
            metric_type=threshold.metric_type,
            severity=severity_for(threshold.metric_type),
            current_value=round(value, 2),
            threshold_value=threshold.threshold_value,
            status="triggered",
            message=build_message(threshold, aggregate.service_name, value),
            created_at=now,
        )
        # 每个组合一个保存点，写入失败只回滚自己，会话仍可继续使用
        async with self.db.begin_nested():
            self.db.add(alert)
            await self.db.flush()  # 刷新以获取 alert.id
            threshold.last_triggered_at = now
        logger.warning("Proxy alert triggered: %s", alert.message)

        if self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch(alert, threshold)
            except Exception:
                logger.exception("Notification dispatch failed for alert %s", alert.id)
        return alert

    async def check_latest(self, now: Optional[datetime] = None) -> list[Alert]:
        """用每个服务最近一条持久化记录手动评估一次。"""
        latest = await MetricsStore(self.db).latest_per_service()
        return await self.evaluate(latest.values(), now=now)

"""
服务聚合模块 (Service Aggregator)

把一轮采集的指标样本归并为每个服务（或入口）一条统计：
请求总数、4xx/5xx 数、平均延迟和连接数。请求速率需要对比相邻两轮，
由 derive_request_rates 基于上一条已持久化记录计算。
"""
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from app.services.exposition_parser import MetricSample

logger = logging.getLogger(__name__)

UNKNOWN_SERVICE = "unknown"
DURATION_BASE = "request_duration_seconds"


@dataclass(frozen=True)
class ServiceAggregate:
    """一个服务在一个采集周期内的统计，创建后不再修改。"""
    service_name: str
    requests_total: int = 0
    errors_4xx: int = 0
    errors_5xx: int = 0
    avg_latency_ms: int = 0
    requests_per_second: float = 0.0
    open_connections: int = 0
    collected_at: Optional[datetime] = None


@dataclass
class _Group:
    requests: float = 0.0
    errors_4xx: float = 0.0
    errors_5xx: float = 0.0
    duration_sum: float = 0.0
    duration_count: float = 0.0
    open_connections: float = 0.0


def _group_key(labels: Mapping[str, str]) -> str:
    return labels.get("service") or labels.get("entrypoint") or UNKNOWN_SERVICE


def _is_router_family(name: str) -> bool:
    # router 计数带 service 标签，与 service 计数重复
    return "_router_" in name


def is_request_counter(name: str) -> bool:
    return (name == "requests_total" or name.endswith("_requests_total")) and not _is_router_family(name)


def _duration_part(name: str) -> Optional[str]:
    """耗时直方图的 _sum / _count 序列返回 "sum" / "count"，否则 None。"""
    if _is_router_family(name):
        return None
    for part in ("sum", "count"):
        suffix = f"{DURATION_BASE}_{part}"
        if name == suffix or name.endswith(f"_{suffix}"):
            return part
    return None


def _is_connection_gauge(name: str) -> bool:
    return name.endswith("open_connections") and not _is_router_family(name)


def aggregate(
    samples: Iterable[MetricSample], collected_at: Optional[datetime] = None
) -> list[ServiceAggregate]:
    """
    归并样本为服务统计。

    只有出现过请求计数器的服务才会产出一条记录；requests_per_second 固定为 0。

    Args:
        samples: 解析得到的样本
        collected_at: 采集时间，默认当前 UTC 时间

    Returns:
        list[ServiceAggregate]: 每个服务一条，顺序无意义
    """
    collected_at = collected_at or datetime.now(timezone.utc)
    groups: dict[str, _Group] = {}
    seen_counters: set[str] = set()

    for sample in samples:
        # NaN/Inf 可以解析但无法计入整数统计
        if not math.isfinite(sample.value):
            logger.debug("Non-finite sample skipped: %s=%s", sample.name, sample.value)
            continue
        key = _group_key(sample.labels)
        group = groups.setdefault(key, _Group())

        if is_request_counter(sample.name):
            seen_counters.add(key)
            group.requests += sample.value
            code = sample.labels.get("code", "")
            if code.startswith("4"):
                group.errors_4xx += sample.value
            elif code.startswith("5"):
                group.errors_5xx += sample.value
            continue

        part = _duration_part(sample.name)
        if part == "sum":
            group.duration_sum += sample.value
        elif part == "count":
            group.duration_count += sample.value
        elif _is_connection_gauge(sample.name):
            group.open_connections += sample.value

    result = []
    for key in seen_counters:
        group = groups[key]
        avg_latency = 0
        if group.duration_count > 0:
            avg_latency = round(group.duration_sum * 1000 / group.duration_count)
        result.append(ServiceAggregate(
            service_name=key,
            requests_total=int(round(group.requests)),
            errors_4xx=int(round(group.errors_4xx)),
            errors_5xx=int(round(group.errors_5xx)),
            avg_latency_ms=int(avg_latency),
            open_connections=int(round(group.open_connections)),
            collected_at=collected_at,
        ))
    return result


def derive_request_rates(current: Iterable[ServiceAggregate], previous: Mapping[str, object]) -> list[ServiceAggregate]:
    """
    用上一条持久化记录推导每秒请求数，返回新的聚合对象。

    previous 以服务名为键，值需有 requests_total 和 collected_at 属性。
    无历史、时间差非正或计数器回退（代理重启）时速率为 0。
    """
    result = []
    for agg in current:
        prev = previous.get(agg.service_name)
        rate = 0.0
        if prev is not None and agg.collected_at is not None:
            prev_at = prev.collected_at
            if prev_at.tzinfo is None:
                prev_at = prev_at.replace(tzinfo=timezone.utc)
            elapsed = (agg.collected_at - prev_at).total_seconds()
            delta = agg.requests_total - prev.requests_total
            if elapsed > 0 and delta >= 0:
                rate = round(delta / elapsed, 2)
            elif delta < 0:
                logger.info("Request counter reset detected for %s", agg.service_name)
        result.append(replace(agg, requests_per_second=rate))
    return result

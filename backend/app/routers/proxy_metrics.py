"""
代理指标路由模块 (Proxy Metrics Router)

功能说明：提供反向代理遥测数据的查询和手动采集接口
核心职责：
  - 手动触发一轮采集（与定时任务共用单飞保护）
  - 历史记录查询（按服务、时间范围过滤）
  - 趋势分桶数据（hour/day/week）
  - 各服务最新统计
  - 代理可用性探测
API端点：POST /collect, GET /history, GET /trends, GET /services, GET /health
"""
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user_id
from app.schemas.proxy_metric import (
    CycleReportResponse,
    ProxyHealthResponse,
    ProxyMetricResponse,
    TrendResponse,
)
from app.services.metrics_store import MetricsStore
from app.tasks.collector import CollectionScheduler

router = APIRouter(prefix="/api/v1/proxy-metrics", tags=["proxy-metrics"])


def get_collector(request: Request) -> CollectionScheduler:
    """取应用级采集调度器；未随 lifespan 创建时按配置懒创建。"""
    collector = getattr(request.app.state, "collector", None)
    if collector is None:
        collector = CollectionScheduler()
        request.app.state.collector = collector
    return collector


@router.post("/collect", response_model=CycleReportResponse)
async def collect_now(
    collector: CollectionScheduler = Depends(get_collector),
    _user_id: int = Depends(get_current_user_id),
):
    """
    手动触发采集 (Trigger Collection)

    已有一轮在执行时不排队，直接返回 skipped=true。
    """
    report = await collector.trigger()
    if report is None:
        return CycleReportResponse(skipped=True)
    return CycleReportResponse(
        status=report.status,
        samples=report.samples,
        aggregates=report.aggregates,
        saved=report.saved,
        alerts_created=report.alerts_created,
        error=report.error,
    )


@router.get("/history", response_model=List[ProxyMetricResponse])
async def metric_history(
    service_name: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """历史记录查询，最新的在前。"""
    return await MetricsStore(db).query(service_name=service_name, start=start, end=end, limit=limit)


@router.get("/trends", response_model=TrendResponse)
async def metric_trends(
    service_name: Optional[str] = None,
    period: Literal["hour", "day", "week"] = "day",
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """
    趋势数据 (Trend Series)

    Args:
        service_name: 只统计该服务，缺省统计全部
        period: hour（5 分钟桶）、day（小时桶）、week（按星期）
    """
    return await MetricsStore(db).trend(service_name=service_name, period=period)


@router.get("/services", response_model=List[ProxyMetricResponse])
async def service_stats(
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """各服务最近一次采集的统计，按服务名排序。"""
    latest = await MetricsStore(db).latest_per_service()
    return [latest[name] for name in sorted(latest)]


@router.get("/health", response_model=ProxyHealthResponse)
async def proxy_health(
    collector: CollectionScheduler = Depends(get_collector),
    _user_id: int = Depends(get_current_user_id),
):
    """探测反向代理是否可达。"""
    health = await collector.source.check_health()
    return ProxyHealthResponse(healthy=health.healthy, version=health.version, error=health.error)

"""代理指标相关响应模型。"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ProxyMetricResponse(BaseModel):
    id: int
    service_name: str
    requests_total: int
    requests_per_second: float
    avg_latency_ms: int
    errors_4xx: int
    errors_5xx: int
    open_connections: int
    collected_at: datetime

    model_config = {"from_attributes": True}


class TrendResponse(BaseModel):
    period: str
    labels: list[str]
    requests_total: list[int]
    avg_latency: list[float]
    errors_4xx: list[int]
    errors_5xx: list[int]

    model_config = {"from_attributes": True}


class CycleReportResponse(BaseModel):
    skipped: bool = False
    status: Optional[str] = None
    samples: int = 0
    aggregates: int = 0
    saved: int = 0
    alerts_created: int = 0
    error: Optional[str] = None


class ProxyHealthResponse(BaseModel):
    healthy: bool
    version: Optional[str] = None
    error: Optional[str] = None

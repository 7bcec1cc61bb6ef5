"""
代理指标模型 (Proxy Metric Model)

每个采集周期、每个服务一行的聚合统计，只追加不修改。
用于历史查询、趋势图和请求速率推导，按保留策略定期清理。

One row per service per collection cycle, append-only. Backs history queries,
trend charts and request-rate derivation; pruned by the retention policy.
"""
from datetime import datetime

from sqlalchemy import String, Integer, Float, BigInteger, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ProxyMetric(Base):
    """
    代理服务聚合指标表 (Proxy Service Aggregate Table)

    requests_total / errors_4xx / errors_5xx 是代理累计计数器在采集时刻的读数，
    avg_latency_ms 由耗时直方图的 _sum/_count 推导，requests_per_second 由相邻两次采集推导。
    """
    __tablename__ = "proxy_metrics"
    __table_args__ = (
        Index("ix_proxy_metrics_service_time", "service_name", "collected_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # 服务或入口名称 (Service / Entrypoint Name)
    requests_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # 累计请求数 (Total Requests)
    requests_per_second: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # 每秒请求数 (Requests per Second)
    avg_latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 平均延迟毫秒 (Average Latency ms)
    errors_4xx: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # 4xx 响应数 (4xx Responses)
    errors_5xx: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # 5xx 响应数 (5xx Responses)
    open_connections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 当前连接数 (Open Connections)
    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )  # 采集时间 (Collection Time)

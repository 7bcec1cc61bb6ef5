"""
告警模型 (Alert Model)

定义阈值规则和告警事件的表结构。
告警事件中的 current_value / threshold_value 是触发时刻的快照，之后修改规则不会影响历史告警。

Defines threshold rules and alert events. An alert's current_value and
threshold_value are snapshots taken when it fired; later rule edits never touch them.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, Boolean, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# 支持的指标类型 (Supported metric types)
METRIC_TYPES = (
    "errors_4xx_rate",
    "errors_5xx_rate",
    "error_total_rate",
    "latency_avg",
    "requests_per_second",
)

# 支持的比较运算符 (Supported operators)
OPERATORS = ("gt", "lt", "gte", "lte", "eq")

# 告警状态 (Alert statuses)
ALERT_STATUSES = ("triggered", "acknowledged", "resolved")


class AlertThreshold(Base):
    """
    阈值规则表 (Alert Threshold Table)

    service_name 为空表示对所有服务生效。last_triggered_at 在每次触发时更新，用于冷却判断。
    """
    __tablename__ = "alert_thresholds"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 规则名称 (Rule Name)
    service_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # 目标服务，空为全部 (Target Service, null = all)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)  # 指标类型 (Metric Type)
    operator: Mapped[str] = mapped_column(String(10), nullable=False, default="gt")  # 比较运算符 (Operator)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)  # 阈值 (Threshold Value)
    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)  # 统计窗口分钟 (Window Minutes)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # 是否启用 (Is Enabled)
    notify_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # 通知站内所有者 (Notify Owner Inbox)
    notify_webhook: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 通知自定义 Webhook (Notify Webhook)
    webhook_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # Webhook 地址 (Webhook URL)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)  # 冷却分钟 (Cooldown Minutes)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近触发时间 (Last Triggered)
    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 创建人用户 ID (Creator User ID)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)


class Alert(Base):
    """
    告警事件表 (Alert Event Table)

    状态流转：triggered → acknowledged（可选） → resolved，resolved 为终态。
    """
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    threshold_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 阈值规则 ID (Threshold ID)
    service_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)  # 服务名称 (Service Name)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)  # 指标类型 (Metric Type)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="warning")  # 严重程度 (Severity)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)  # 触发时指标值 (Value at Trigger)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)  # 触发时阈值 (Threshold at Trigger)
    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False, default="triggered")  # 状态 (Status)
    message: Mapped[str] = mapped_column(Text, nullable=False)  # 告警消息 (Alert Message)
    acknowledged_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 确认人用户 ID (Acknowledged by User ID)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 确认时间 (Acknowledged Time)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 解决时间 (Resolved Time)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True, server_default=func.now()
    )  # 创建时间 (Creation Time)

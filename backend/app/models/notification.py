"""
通知模型 (Notification Model)

定义聊天机器人集成配置和通知发送日志的表结构。
集成配置以 JSON 存储，读写时由 app.schemas.notification 中的标签联合类型校验。

Defines chat-bot integration settings and the notification log. Integration
config is stored as JSON and validated by the tagged union in
app.schemas.notification on save and on load.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Boolean, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# 通知提供方 (Notification providers)
PROVIDERS = ("owner", "telegram", "slack", "webhook")

# 可保存为集成配置的提供方 (Providers configurable as integrations)
INTEGRATION_PROVIDERS = ("telegram", "slack")


class NotificationIntegration(Base):
    """
    聊天机器人集成表 (Chat Integration Table)

    config 示例：{"provider": "telegram", "bot_token": "...", "chat_id": "..."}
    """
    __tablename__ = "notification_integrations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 集成名称 (Integration Name)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # 提供方：telegram/slack (Provider)
    config: Mapped[dict] = mapped_column(JSON, nullable=False)  # 提供方配置 JSON (Provider Config JSON)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # 是否启用 (Is Enabled)
    last_tested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近测试时间 (Last Tested)
    last_test_success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)  # 最近测试结果 (Last Test Result)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)


class NotificationLog(Base):
    """
    通知发送日志表 (Notification Log Table)

    每次渠道调用一行，只追加。成功与否、错误信息和对方返回的消息 ID 都记录在此。
    """
    __tablename__ = "notification_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # 提供方 (Provider)
    alert_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)  # 告警 ID，测试消息为空 (Alert ID, null for tests)
    integration_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 集成 ID (Integration ID)
    title: Mapped[str] = mapped_column(String(255), nullable=False)  # 通知标题 (Title)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 通知正文 (Message)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")  # 严重程度 (Severity)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 是否成功 (Success)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 错误信息 (Error)
    message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # 对方消息 ID (Remote Message ID)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True, server_default=func.now()
    )  # 发送时间 (Sent Time)

"""
通知相关请求/响应模型

集成配置是按 provider 区分的标签联合类型，保存和读取时都经过校验。
"""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

SLACK_WEBHOOK_PREFIX = "https://hooks.slack.com/services/"
SECRET_CONFIG_KEYS = ("bot_token", "webhook_url")


class TelegramConfig(BaseModel):
    """Telegram 机器人配置。bot_token 形如 123456789:ABCdef..."""
    provider: Literal["telegram"] = "telegram"
    bot_token: str = Field(pattern=r"^\d+:[A-Za-z0-9_-]+$")
    chat_id: str = Field(min_length=1)
    parse_mode: Literal["HTML", "Markdown", "MarkdownV2"] = "HTML"


class SlackConfig(BaseModel):
    """Slack Incoming Webhook 配置。"""
    provider: Literal["slack"] = "slack"
    webhook_url: str
    channel: Optional[str] = None
    username: str = "EdgeWatch"
    icon_emoji: str = ":bell:"

    @field_validator("webhook_url")
    @classmethod
    def _check_webhook_url(cls, value: str) -> str:
        if not value.startswith(SLACK_WEBHOOK_PREFIX):
            raise ValueError(f"webhook_url must start with {SLACK_WEBHOOK_PREFIX}")
        return value


IntegrationConfig = Annotated[Union[TelegramConfig, SlackConfig], Field(discriminator="provider")]

# 读取数据库中 JSON 配置时使用 (Used when loading JSON config from the database)
integration_config_adapter: TypeAdapter[IntegrationConfig] = TypeAdapter(IntegrationConfig)


class NotificationIntegrationCreate(BaseModel):
    """创建集成请求体，provider 由 config 决定。"""
    name: str = Field(min_length=1, max_length=255)
    config: IntegrationConfig
    is_enabled: bool = True


class NotificationIntegrationUpdate(BaseModel):
    """更新集成请求体（所有字段可选）。"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    config: Optional[IntegrationConfig] = None
    is_enabled: Optional[bool] = None


class NotificationIntegrationResponse(BaseModel):
    """集成响应体。"""
    id: int
    name: str
    provider: str
    config: dict
    is_enabled: bool
    last_tested_at: Optional[datetime]
    last_test_success: Optional[bool]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("config")
    @classmethod
    def _mask_secrets(cls, value: dict) -> dict:
        # 响应中不回显完整的机器人令牌和 Webhook 地址
        masked = dict(value)
        for key in SECRET_CONFIG_KEYS:
            secret = masked.get(key)
            if isinstance(secret, str) and len(secret) > 8:
                masked[key] = f"{secret[:4]}...{secret[-4:]}"
        return masked


class NotificationLogResponse(BaseModel):
    """通知发送日志响应体。"""
    id: int
    provider: str
    alert_id: Optional[int]
    integration_id: Optional[int]
    title: str
    message: Optional[str]
    severity: str
    success: bool
    error: Optional[str]
    message_id: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationResultResponse(BaseModel):
    """单个渠道的发送结果。"""
    provider: str
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None

    model_config = {"from_attributes": True}

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

MetricType = Literal[
    "errors_4xx_rate", "errors_5xx_rate", "error_total_rate", "latency_avg", "requests_per_second",
]
Operator = Literal["gt", "lt", "gte", "lte", "eq"]


# ── AlertThreshold ──

class AlertThresholdCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    service_name: str | None = None
    metric_type: MetricType
    operator: Operator = "gt"
    threshold_value: float
    window_minutes: int = Field(5, ge=1)
    is_enabled: bool = True
    notify_email: bool = True
    notify_webhook: bool = False
    webhook_url: str | None = None
    cooldown_minutes: int = Field(15, ge=0)

    @model_validator(mode="after")
    def _webhook_url_required(self):
        if self.notify_webhook and not self.webhook_url:
            raise ValueError("webhook_url is required when notify_webhook is enabled")
        return self


class AlertThresholdUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    service_name: str | None = None
    metric_type: MetricType | None = None
    operator: Operator | None = None
    threshold_value: float | None = None
    window_minutes: int | None = Field(None, ge=1)
    is_enabled: bool | None = None
    notify_email: bool | None = None
    notify_webhook: bool | None = None
    webhook_url: str | None = None
    cooldown_minutes: int | None = Field(None, ge=0)

    @field_validator(
        "name", "metric_type", "operator", "threshold_value", "window_minutes", "is_enabled",
        "notify_email", "notify_webhook", "cooldown_minutes",
    )
    @classmethod
    def _not_null(cls, value):
        # 省略表示不修改；显式 null 不能写入非空列
        if value is None:
            raise ValueError("field cannot be null")
        return value


class AlertThresholdResponse(BaseModel):
    id: int
    name: str
    service_name: str | None
    metric_type: str
    operator: str
    threshold_value: float
    window_minutes: int
    is_enabled: bool
    notify_email: bool
    notify_webhook: bool
    webhook_url: str | None
    cooldown_minutes: int
    last_triggered_at: datetime | None
    created_by_id: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ── Alert ──

class AlertResponse(BaseModel):
    id: int
    threshold_id: int
    service_name: str
    metric_type: str
    severity: str
    current_value: float
    threshold_value: float
    status: str
    message: str
    acknowledged_by_id: int | None
    acknowledged_at: datetime | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

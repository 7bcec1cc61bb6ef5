"""
通知分发服务模块。

把触发的告警并发发送到所有适用渠道：站内所有者通知、Telegram、Slack 和规则自带的 Webhook。
每个渠道独立格式化、独立调用、独立捕获异常，一个渠道失败不影响其他渠道；
每次调用写一条通知日志，失败只体现在日志和返回结果中，从不向调用方抛出。
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.alert import Alert, AlertThreshold
from app.models.notification import NotificationIntegration, NotificationLog
from app.schemas.notification import SlackConfig, TelegramConfig, integration_config_adapter
from app.services.metrics_store import as_utc

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
    "critical": "🚨",
}

SEVERITY_COLOR = {
    "info": "#36a64f",
    "warning": "#ffcc00",
    "error": "#ff6600",
    "critical": "#ff0000",
}


@dataclass
class NotificationPayload:
    """所有渠道共用的通知内容。"""
    title: str
    message: str
    severity: str = "warning"
    service_name: Optional[str] = None
    metric_value: Optional[str] = None
    threshold_value: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    alert_id: Optional[int] = None
    metric_type: Optional[str] = None


@dataclass
class NotificationResult:
    """单个渠道的发送结果，不单独持久化，写入 notification_logs。"""
    provider: str
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


# ---------------------------------------------------------------------------
# 消息内容
# ---------------------------------------------------------------------------

def escape_html(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _format_number(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def build_payload(alert: Alert, threshold: Optional[AlertThreshold] = None) -> NotificationPayload:
    """从告警快照构建通知内容。"""
    name = threshold.name if threshold is not None else alert.metric_type
    created_at = as_utc(alert.created_at) if alert.created_at else datetime.now(timezone.utc)
    return NotificationPayload(
        title=f"Proxy alert: {name}",
        message=alert.message,
        severity=alert.severity or "warning",
        service_name=alert.service_name,
        metric_value=_format_number(alert.current_value),
        threshold_value=_format_number(alert.threshold_value),
        timestamp=created_at,
        alert_id=alert.id,
        metric_type=alert.metric_type,
    )


def build_test_payload(provider: str) -> NotificationPayload:
    return NotificationPayload(
        title="Test notification",
        message=f"This is a test message for the {provider} integration.",
        severity="info",
        service_name="test-service",
        metric_value="42",
        threshold_value="50",
    )


def _timestamp_text(payload: NotificationPayload) -> str:
    return payload.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_telegram_text(payload: NotificationPayload, parse_mode: str = "HTML") -> str:
    """Telegram 正文，HTML 模式下转义用户内容。"""
    emoji = SEVERITY_EMOJI.get(payload.severity, "📢")
    if parse_mode == "HTML":
        text = f"{emoji} <b>{escape_html(payload.title)}</b>\n\n{escape_html(payload.message)}\n\n"
        if payload.service_name:
            text += f"<b>Service:</b> {escape_html(payload.service_name)}\n"
        if payload.metric_value and payload.threshold_value:
            text += (
                f"<b>Value:</b> {escape_html(payload.metric_value)} "
                f"(threshold: {escape_html(payload.threshold_value)})\n"
            )
        text += f"<i>{_timestamp_text(payload)}</i>"
        return text

    text = f"{emoji} *{payload.title}*\n\n{payload.message}\n\n"
    if payload.service_name:
        text += f"*Service:* {payload.service_name}\n"
    if payload.metric_value and payload.threshold_value:
        text += f"*Value:* {payload.metric_value} (threshold: {payload.threshold_value})\n"
    text += f"_{_timestamp_text(payload)}_"
    return text


def build_slack_body(config: SlackConfig, payload: NotificationPayload) -> dict:
    """Slack attachment 格式消息体。"""
    fields = []
    if payload.service_name:
        fields.append({"title": "Service", "value": payload.service_name, "short": True})
    if payload.metric_value:
        fields.append({"title": "Value", "value": payload.metric_value, "short": True})
    if payload.threshold_value:
        fields.append({"title": "Threshold", "value": payload.threshold_value, "short": True})

    body: dict = {
        "username": config.username,
        "icon_emoji": config.icon_emoji,
        "attachments": [
            {
                "color": SEVERITY_COLOR.get(payload.severity, "#808080"),
                "title": payload.title,
                "text": payload.message,
                "fields": fields,
                "footer": settings.notification_footer,
                "ts": int(payload.timestamp.timestamp()),
            }
        ],
    }
    if config.channel:
        body["channel"] = config.channel
    return body


def build_webhook_body(payload: NotificationPayload) -> dict:
    """通用 Webhook JSON 消息体。"""
    return {
        "event": "proxy_alert.triggered",
        "alert_id": payload.alert_id,
        "title": payload.title,
        "message": payload.message,
        "severity": payload.severity,
        "service_name": payload.service_name,
        "metric_type": payload.metric_type,
        "current_value": payload.metric_value,
        "threshold_value": payload.threshold_value,
        "timestamp": payload.timestamp.isoformat(),
    }


def build_owner_content(payload: NotificationPayload) -> str:
    lines = [payload.message]
    if payload.service_name:
        lines.append(f"Service: {payload.service_name}")
    if payload.metric_value and payload.threshold_value:
        lines.append(f"Value: {payload.metric_value} (threshold: {payload.threshold_value})")
    lines.append(f"Time: {_timestamp_text(payload)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# 渠道发送
# ---------------------------------------------------------------------------

async def send_owner(client: httpx.AsyncClient, payload: NotificationPayload) -> NotificationResult:
    """站内所有者通知：POST {title, content} 到 Wiki 通知接口。"""
    if not settings.owner_notify_url:
        return NotificationResult("owner", False, error="Owner notification endpoint not configured")

    headers = {"Content-Type": "application/json"}
    if settings.owner_notify_token:
        headers["Authorization"] = f"Bearer {settings.owner_notify_token}"
    resp = await client.post(
        settings.owner_notify_url,
        json={"title": payload.title, "content": build_owner_content(payload)},
        headers=headers,
    )
    if not resp.is_success:
        return NotificationResult("owner", False, error=f"HTTP {resp.status_code}")
    return NotificationResult("owner", True)


async def send_telegram(
    client: httpx.AsyncClient, config: TelegramConfig, payload: NotificationPayload
) -> NotificationResult:
    """Telegram Bot API sendMessage。"""
    url = f"{settings.telegram_api_base.rstrip('/')}/bot{config.bot_token}/sendMessage"
    resp = await client.post(url, json={
        "chat_id": config.chat_id,
        "text": format_telegram_text(payload, config.parse_mode),
        "parse_mode": config.parse_mode,
        "disable_web_page_preview": True,
    })
    try:
        data = resp.json()
    except ValueError:
        return NotificationResult("telegram", False, error=f"HTTP {resp.status_code}: invalid JSON response")

    if not data.get("ok"):
        return NotificationResult(
            "telegram", False, error=data.get("description") or "Unknown Telegram API error"
        )
    message_id = (data.get("result") or {}).get("message_id")
    return NotificationResult("telegram", True, message_id=str(message_id) if message_id is not None else None)


async def send_slack(
    client: httpx.AsyncClient, config: SlackConfig, payload: NotificationPayload
) -> NotificationResult:
    """Slack Incoming Webhook。"""
    resp = await client.post(config.webhook_url, json=build_slack_body(config, payload))
    if not resp.is_success:
        return NotificationResult("slack", False, error=f"Slack API error: {resp.status_code} - {resp.text[:200]}")
    return NotificationResult("slack", True)


async def send_webhook(client: httpx.AsyncClient, url: str, payload: NotificationPayload) -> NotificationResult:
    """规则自带的通用 JSON Webhook。"""
    resp = await client.post(url, json=build_webhook_body(payload), headers={"Content-Type": "application/json"})
    if not resp.is_success:
        return NotificationResult("webhook", False, error=f"HTTP {resp.status_code}")
    return NotificationResult("webhook", True)


# ---------------------------------------------------------------------------
# 分发器
# ---------------------------------------------------------------------------

@dataclass
class _Delivery:
    provider: str
    send: Callable[[httpx.AsyncClient], Awaitable[NotificationResult]]
    integration_id: Optional[int] = None


class NotificationDispatcher:
    """
    告警通知分发器

    Args:
        db: 数据库会话，用于读取集成配置和写通知日志
        transport: 可选的 httpx 传输层（测试时注入 MockTransport）
        timeout: 单个渠道调用超时秒数，默认取配置
    """

    def __init__(
        self,
        db: AsyncSession,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def load_integrations(self) -> list[tuple[NotificationIntegration, TelegramConfig | SlackConfig]]:
        """读取已启用的集成并校验配置，配置非法的集成记录日志后跳过。"""
        result = await self.db.execute(
            select(NotificationIntegration)
            .where(NotificationIntegration.is_enabled == True)  # noqa: E712
            .order_by(NotificationIntegration.id)
        )
        loaded = []
        for integration in result.scalars().all():
            try:
                config = integration_config_adapter.validate_python(
                    {**integration.config, "provider": integration.provider}
                )
            except PydanticValidationError as e:
                logger.warning("Invalid config for integration %s (%s): %s", integration.id, integration.provider, e)
                continue
            loaded.append((integration, config))
        return loaded

    def _integration_delivery(self, integration: NotificationIntegration, config, payload) -> _Delivery:
        if isinstance(config, TelegramConfig):
            return _Delivery("telegram", lambda c: send_telegram(c, config, payload), integration.id)
        return _Delivery("slack", lambda c: send_slack(c, config, payload), integration.id)

    async def dispatch(self, alert: Alert, threshold: Optional[AlertThreshold] = None) -> list[NotificationResult]:
        """
        向所有适用渠道并发发送告警通知。

        渠道选择：规则开启 notify_email 时发送站内所有者通知；所有已启用的 Telegram/Slack 集成；
        规则开启 notify_webhook 且配置了 webhook_url 时发送 Webhook。
        """
        payload = build_payload(alert, threshold)
        deliveries: list[_Delivery] = []

        if threshold is None or threshold.notify_email:
            deliveries.append(_Delivery("owner", lambda c: send_owner(c, payload)))

        for integration, config in await self.load_integrations():
            deliveries.append(self._integration_delivery(integration, config, payload))

        if threshold is not None and threshold.notify_webhook and threshold.webhook_url:
            url = threshold.webhook_url
            deliveries.append(_Delivery("webhook", lambda c: send_webhook(c, url, payload)))

        if not deliveries:
            return []

        async with self._client() as client:
            results = await asyncio.gather(*(self._deliver(client, d) for d in deliveries))

        await self._write_logs(payload, deliveries, results)
        for result in results:
            if result.success:
                logger.info("Notification sent for alert %s via %s", alert.id, result.provider)
            else:
                logger.warning("Notification failed for alert %s via %s: %s", alert.id, result.provider, result.error)
        return list(results)

    async def send_test(self, integration: NotificationIntegration) -> NotificationResult:
        """向单个集成发送测试消息，并记录测试结果。"""
        try:
            config = integration_config_adapter.validate_python(
                {**integration.config, "provider": integration.provider}
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Integration {integration.id} has an invalid config", detail=str(e)) from e
        payload = build_test_payload(integration.provider)
        delivery = self._integration_delivery(integration, config, payload)
        async with self._client() as client:
            result = await self._deliver(client, delivery)

        integration.last_tested_at = datetime.now(timezone.utc)
        integration.last_test_success = result.success
        await self._write_logs(payload, [delivery], [result])
        return result

    async def _deliver(self, client: httpx.AsyncClient, delivery: _Delivery) -> NotificationResult:
        """执行单个渠道调用，任何异常都转成失败结果。"""
        try:
            return await delivery.send(client)
        except httpx.TimeoutException:
            return NotificationResult(delivery.provider, False, error=f"Timed out after {self.timeout}s")
        except Exception as e:
            logger.debug("Channel %s raised", delivery.provider, exc_info=True)
            return NotificationResult(delivery.provider, False, error=str(e)[:500] or type(e).__name__)

    async def _write_logs(self, payload: NotificationPayload, deliveries, results) -> None:
        try:
            async with self.db.begin_nested():
                for delivery, result in zip(deliveries, results):
                    self.db.add(NotificationLog(
                        provider=result.provider,
                        alert_id=payload.alert_id,
                        integration_id=delivery.integration_id,
                        title=payload.title[:255],
                        message=payload.message,
                        severity=payload.severity,
                        success=result.success,
                        error=result.error,
                        message_id=result.message_id,
                    ))
        except SQLAlchemyError:
            logger.exception("Failed to write notification logs for alert %s", payload.alert_id)

"""通知分发测试（httpx.MockTransport 模拟外部渠道）。"""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.alert import Alert, AlertThreshold
from app.models.notification import NotificationIntegration, NotificationLog
from app.services.notifier import (
    NotificationDispatcher,
    build_payload,
    build_slack_body,
    escape_html,
    format_telegram_text,
)
from app.schemas.notification import SlackConfig

OWNER_URL = "https://wiki.example/api/notifications/owner"
SLACK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"
WEBHOOK_URL = "https://hooks.example.com/edge"
BOT_TOKEN = "123456:ABC-def_ghi"


@pytest.fixture(autouse=True)
def owner_endpoint(monkeypatch):
    monkeypatch.setattr(settings, "owner_notify_url", OWNER_URL)
    monkeypatch.setattr(settings, "owner_notify_token", "owner-token")


class Recorder:
    """按主机名路由的 MockTransport 处理器，记录所有请求。"""

    def __init__(self, routes=None):
        self.requests: list[httpx.Request] = []
        self.routes = routes or {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.host)
        if route is not None:
            result = route(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        if request.url.host == "api.telegram.org":
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 77}})
        return httpx.Response(200, json={})

    def bodies_for(self, host: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.host == host]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


async def _fixture(db, notify_email=True, notify_webhook=False, integrations=("telegram", "slack"), message=None):
    threshold = AlertThreshold(
        name="5xx spike",
        metric_type="errors_5xx_rate",
        operator="gt",
        threshold_value=5.0,
        notify_email=notify_email,
        notify_webhook=notify_webhook,
        webhook_url=WEBHOOK_URL if notify_webhook else None,
    )
    db.add(threshold)
    await db.flush()
    alert = Alert(
        threshold_id=threshold.id,
        service_name="wiki@docker",
        metric_type="errors_5xx_rate",
        severity="critical",
        current_value=12.5,
        threshold_value=5.0,
        status="triggered",
        message=message or "5xx spike: 5xx error rate for service wiki@docker is 12.50% (> 5.00%)",
        created_at=datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
    )
    db.add(alert)
    for provider in integrations:
        if provider == "telegram":
            config = {"provider": "telegram", "bot_token": BOT_TOKEN, "chat_id": "-100123", "parse_mode": "HTML"}
        else:
            config = {"provider": "slack", "webhook_url": SLACK_URL, "username": "EdgeWatch", "icon_emoji": ":bell:"}
        db.add(NotificationIntegration(name=f"{provider} ops", provider=provider, config=config))
    await db.commit()
    return alert, threshold


async def _logs(db) -> list[NotificationLog]:
    result = await db.execute(select(NotificationLog).order_by(NotificationLog.id))
    return list(result.scalars().all())


class TestFormatting:
    def test_escape_html(self):
        assert escape_html('<b>"a" & b</b>') == "&lt;b&gt;&quot;a&quot; &amp; b&lt;/b&gt;"

    async def test_telegram_html_text(self, db_session):
        alert, threshold = await _fixture(db_session, message="<script>alert(1)</script>")
        text = format_telegram_text(build_payload(alert, threshold), "HTML")
        assert text.startswith("🚨 <b>Proxy alert: 5xx spike</b>")
        assert "&lt;script&gt;" in text
        assert "<script>" not in text
        assert "<b>Service:</b> wiki@docker" in text
        assert "12.5 (threshold: 5)" in text

    async def test_telegram_markdown_text(self, db_session):
        alert, threshold = await _fixture(db_session)
        text = format_telegram_text(build_payload(alert, threshold), "Markdown")
        assert "*Service:* wiki@docker" in text

    async def test_slack_body(self, db_session):
        alert, threshold = await _fixture(db_session)
        config = SlackConfig(webhook_url=SLACK_URL, channel="#ops")
        body = build_slack_body(config, build_payload(alert, threshold))
        attachment = body["attachments"][0]
        assert body["channel"] == "#ops"
        assert attachment["color"] == "#ff0000"
        assert attachment["footer"] == settings.notification_footer
        assert {f["title"] for f in attachment["fields"]} == {"Service", "Value", "Threshold"}
        assert attachment["ts"] == int(alert.created_at.timestamp())


class TestDispatch:
    async def test_sends_to_every_applicable_channel(self, db_session):
        alert, threshold = await _fixture(db_session, notify_webhook=True)
        recorder = Recorder()

        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        await db_session.commit()

        assert sorted(r.provider for r in results) == ["owner", "slack", "telegram", "webhook"]
        assert all(r.success for r in results)
        telegram = next(r for r in results if r.provider == "telegram")
        assert telegram.message_id == "77"

        owner_request = next(r for r in recorder.requests if r.url.host == "wiki.example")
        assert owner_request.headers["Authorization"] == "Bearer owner-token"
        owner_body = json.loads(owner_request.content)
        assert owner_body["title"] == "Proxy alert: 5xx spike"
        assert "wiki@docker" in owner_body["content"]

        (telegram_body,) = recorder.bodies_for("api.telegram.org")
        assert telegram_body["chat_id"] == "-100123"
        assert telegram_body["parse_mode"] == "HTML"
        telegram_request = next(r for r in recorder.requests if r.url.host == "api.telegram.org")
        assert telegram_request.url.path == f"/bot{BOT_TOKEN}/sendMessage"

        (webhook_body,) = recorder.bodies_for("hooks.example.com")
        assert webhook_body["event"] == "proxy_alert.triggered"
        assert webhook_body["alert_id"] == alert.id
        assert webhook_body["service_name"] == "wiki@docker"

        logs = await _logs(db_session)
        assert len(logs) == 4
        assert {log.alert_id for log in logs} == {alert.id}
        assert all(log.success for log in logs)

    async def test_channel_failures_are_isolated(self, db_session):
        alert, threshold = await _fixture(db_session, notify_webhook=True)

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder(routes={
            "api.telegram.org": refuse,
            "hooks.slack.com": lambda request: httpx.Response(500, text="invalid_payload"),
        })
        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        await db_session.commit()

        by_provider = {r.provider: r for r in results}
        assert by_provider["owner"].success is True
        assert by_provider["webhook"].success is True
        assert by_provider["telegram"].success is False
        assert "connection refused" in by_provider["telegram"].error
        assert by_provider["slack"].success is False
        assert "500" in by_provider["slack"].error

        failed_logs = [log for log in await _logs(db_session) if not log.success]
        assert sorted(log.provider for log in failed_logs) == ["slack", "telegram"]
        assert all(log.error for log in failed_logs)

    async def test_channels_run_concurrently(self, db_session):
        alert, threshold = await _fixture(db_session)
        slack_started = asyncio.Event()

        async def telegram(request):
            # 串行执行时 Slack 不会在 Telegram 返回前开始
            await asyncio.wait_for(slack_started.wait(), timeout=2)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        async def slack(request):
            slack_started.set()
            return httpx.Response(200, text="ok")

        recorder = Recorder(routes={"api.telegram.org": telegram, "hooks.slack.com": slack})
        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        assert all(r.success for r in results)

    async def test_telegram_api_error_description(self, db_session):
        alert, threshold = await _fixture(db_session, integrations=("telegram",))
        recorder = Recorder(routes={
            "api.telegram.org": lambda request: httpx.Response(
                400, json={"ok": False, "description": "Bad Request: chat not found"}
            ),
        })
        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        telegram = next(r for r in results if r.provider == "telegram")
        assert telegram.success is False
        assert telegram.error == "Bad Request: chat not found"

    async def test_timeout_becomes_failed_result(self, db_session):
        alert, threshold = await _fixture(db_session, integrations=())

        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        recorder = Recorder(routes={"wiki.example": slow})
        (result,) = await NotificationDispatcher(
            db_session, transport=recorder.transport, timeout=3
        ).dispatch(alert, threshold)
        assert result.provider == "owner"
        assert result.success is False
        assert result.error == "Timed out after 3s"

    async def test_owner_endpoint_not_configured(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "owner_notify_url", "")
        alert, threshold = await _fixture(db_session, integrations=())
        recorder = Recorder()

        (result,) = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        assert result.success is False
        assert "not configured" in result.error
        assert recorder.requests == []

    async def test_channel_selection_follows_threshold_flags(self, db_session):
        alert, threshold = await _fixture(db_session, notify_email=False, integrations=("slack",))
        recorder = Recorder()
        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        assert [r.provider for r in results] == ["slack"]

    async def test_disabled_and_invalid_integrations_are_skipped(self, db_session):
        alert, threshold = await _fixture(db_session, notify_email=False, integrations=())
        db_session.add(NotificationIntegration(
            name="off", provider="slack", is_enabled=False,
            config={"provider": "slack", "webhook_url": SLACK_URL},
        ))
        db_session.add(NotificationIntegration(
            name="broken", provider="telegram",
            config={"provider": "telegram", "bot_token": "not-a-token", "chat_id": "1"},
        ))
        await db_session.commit()

        recorder = Recorder()
        results = await NotificationDispatcher(db_session, transport=recorder.transport).dispatch(alert, threshold)
        assert results == []
        assert recorder.requests == []
        assert await _logs(db_session) == []


class TestSendTest:
    async def test_records_test_outcome(self, db_session):
        await _fixture(db_session, integrations=("telegram",))
        integration = (await db_session.execute(select(NotificationIntegration))).scalar_one()
        recorder = Recorder()

        result = await NotificationDispatcher(db_session, transport=recorder.transport).send_test(integration)
        await db_session.commit()

        assert result.success is True
        assert integration.last_test_success is True
        assert integration.last_tested_at is not None
        (log,) = await _logs(db_session)
        assert log.alert_id is None
        assert log.integration_id == integration.id
        assert log.title == "Test notification"

    async def test_failed_test_is_recorded(self, db_session):
        await _fixture(db_session, integrations=("slack",))
        integration = (await db_session.execute(select(NotificationIntegration))).scalar_one()
        recorder = Recorder(routes={"hooks.slack.com": lambda request: httpx.Response(404, text="no_service")})

        result = await NotificationDispatcher(db_session, transport=recorder.transport).send_test(integration)
        assert result.success is False
        assert integration.last_test_success is False

    async def test_invalid_config_rejected(self, db_session):
        integration = NotificationIntegration(
            name="broken", provider="slack", config={"provider": "slack", "webhook_url": "http://evil"}
        )
        db_session.add(integration)
        await db_session.commit()
        with pytest.raises(ValidationError):
            await NotificationDispatcher(db_session).send_test(integration)

"""采集调度器测试：完整周期、错误分级、单飞与跨实例锁。"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models.alert import Alert, AlertThreshold
from app.models.notification import NotificationLog
from app.models.proxy_metric import ProxyMetric
from app.services.metrics_store import MetricsStore
from app.services.proxy_client import ProxyMetricsSource
from app.tasks.collector import LOCK_KEY, CollectionScheduler

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def metrics_text(ok=900, not_found=50, server_error=50):
    return (
        "# TYPE traefik_service_requests_total counter\n"
        f'traefik_service_requests_total{{code="200",service="wiki@docker"}} {ok}\n'
        f'traefik_service_requests_total{{code="404",service="wiki@docker"}} {not_found}\n'
        f'traefik_service_requests_total{{code="503",service="wiki@docker"}} {server_error}\n'
        'traefik_service_request_duration_seconds_sum{service="wiki@docker"} 45\n'
        'traefik_service_request_duration_seconds_count{service="wiki@docker"} 1000\n'
        'traefik_service_requests_total{code="200",service="api@docker"} 10\n'
    )


def source_for(handler) -> ProxyMetricsSource:
    return ProxyMetricsSource(base_url="http://proxy:8080", transport=httpx.MockTransport(handler))


def static_source(text: str) -> ProxyMetricsSource:
    return source_for(lambda request: httpx.Response(200, text=text))


class GatedSource:
    """fetch 在 release 之前一直阻塞，用于模拟慢周期。"""

    def __init__(self, text: str):
        self.text = text
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch_metrics_text(self) -> str:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.text


def scheduler(session_factory, source, **kwargs) -> CollectionScheduler:
    kwargs.setdefault("use_redis_lock", False)
    kwargs.setdefault("notify_transport", httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    return CollectionScheduler(source=source, session_factory=session_factory, interval=60, **kwargs)


async def _all(db, model):
    result = await db.execute(select(model).order_by(model.id))
    return list(result.scalars().all())


class TestRunCycle:
    async def test_successful_cycle_persists_aggregates(self, db_session, session_factory):
        report = await scheduler(session_factory, static_source(metrics_text())).run_cycle(now=NOW)

        assert report.status == "ok"
        assert report.samples == 6
        assert report.aggregates == 2
        assert report.saved == 2
        assert report.error is None

        rows = {r.service_name: r for r in await _all(db_session, ProxyMetric)}
        assert set(rows) == {"wiki@docker", "api@docker"}
        wiki = rows["wiki@docker"]
        assert (wiki.requests_total, wiki.errors_4xx, wiki.errors_5xx, wiki.avg_latency_ms) == (1000, 50, 50, 45)

    async def test_request_rate_derived_from_previous_cycle(self, db_session, session_factory):
        await scheduler(session_factory, static_source(metrics_text(ok=900))).run_cycle(now=NOW)
        await scheduler(session_factory, static_source(metrics_text(ok=1500))).run_cycle(
            now=NOW + timedelta(seconds=60)
        )

        latest = await MetricsStore(db_session).latest_per_service(["wiki@docker"])
        assert latest["wiki@docker"].requests_per_second == 10.0

    async def test_non_finite_samples_do_not_break_cycle(self, db_session, session_factory):
        text = metrics_text() + 'traefik_service_requests_total{code="500",service="api@docker"} NaN\n'
        report = await scheduler(session_factory, static_source(text)).run_cycle(now=NOW)

        assert report.status == "ok"
        assert report.saved == 2

    async def test_source_failure_aborts_cycle(self, db_session, session_factory):
        await _threshold(db_session)
        source = source_for(lambda request: httpx.Response(503, text="unavailable"))

        report = await scheduler(session_factory, source).run_cycle(now=NOW)

        assert report.status == "source_error"
        assert "503" in report.error
        assert await _all(db_session, ProxyMetric) == []
        assert await _all(db_session, Alert) == []

    async def test_transport_error_aborts_cycle(self, db_session, session_factory):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        report = await scheduler(session_factory, source_for(refuse)).run_cycle(now=NOW)
        assert report.status == "source_error"
        assert await _all(db_session, ProxyMetric) == []

    async def test_breach_creates_alert_and_notification_logs(self, db_session, session_factory):
        await _threshold(db_session)

        report = await scheduler(session_factory, static_source(metrics_text())).run_cycle(now=NOW)

        assert report.alerts_created == 1
        (alert,) = await _all(db_session, Alert)
        assert alert.service_name == "wiki@docker"
        assert alert.current_value == 5.0
        logs = await _all(db_session, NotificationLog)
        assert [log.provider for log in logs] == ["owner"]
        assert logs[0].alert_id == alert.id

    async def test_persistence_failure_still_evaluates(self, db_session, session_factory):
        await _threshold(db_session)

        failing_save = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
        with patch.object(MetricsStore, "save", failing_save):
            report = await scheduler(session_factory, static_source(metrics_text())).run_cycle(now=NOW)

        assert report.status == "persist_error"
        assert report.saved == 0
        assert report.alerts_created == 1
        assert await _all(db_session, ProxyMetric) == []
        assert len(await _all(db_session, Alert)) == 1

    async def test_unexpected_error_is_contained(self, session_factory):
        with patch("app.tasks.collector.aggregate", side_effect=RuntimeError("bad aggregate")):
            report = await scheduler(session_factory, static_source(metrics_text())).run_cycle(now=NOW)
        assert report.status == "error"
        assert "bad aggregate" in report.error


class TestSingleFlight:
    async def test_trigger_skips_while_cycle_running(self, session_factory):
        source = GatedSource(metrics_text())
        collector = scheduler(session_factory, source)

        first = asyncio.create_task(collector.trigger())
        await asyncio.wait_for(source.started.wait(), timeout=2)

        assert collector.cycle_in_progress is True
        assert await collector.trigger() is None

        source.release.set()
        report = await asyncio.wait_for(first, timeout=5)
        assert report.status == "ok"
        assert source.calls == 1
        assert collector.last_report is report

    async def test_trigger_runs_again_after_cycle_finishes(self, session_factory):
        collector = scheduler(session_factory, static_source(metrics_text()))
        assert (await collector.trigger()).status == "ok"
        assert (await collector.trigger()).status == "ok"

    async def test_lock_held_by_other_instance_skips(self, session_factory, fake_redis):
        await fake_redis.set(LOCK_KEY, "other-instance")
        source = GatedSource(metrics_text())
        collector = scheduler(session_factory, source, use_redis_lock=True, redis_getter=AsyncMock(return_value=fake_redis))

        assert await collector.trigger() is None
        assert source.calls == 0

    async def test_lock_released_after_cycle(self, session_factory, fake_redis):
        collector = scheduler(
            session_factory, static_source(metrics_text()),
            use_redis_lock=True, redis_getter=AsyncMock(return_value=fake_redis),
        )
        report = await collector.trigger()
        assert report.status == "ok"
        assert await fake_redis.get(LOCK_KEY) is None

    async def test_redis_failure_falls_back_to_local_guard(self, session_factory, broken_redis):
        collector = scheduler(
            session_factory, static_source(metrics_text()),
            use_redis_lock=True, redis_getter=AsyncMock(return_value=broken_redis),
        )
        report = await collector.trigger()
        assert report is not None
        assert report.status == "ok"


class TestLifecycle:
    async def test_start_runs_cycles_until_stopped(self, session_factory):
        collector = scheduler(session_factory, static_source(metrics_text()))
        collector.interval = 0.01

        collector.start()
        assert collector.is_running is True
        for _ in range(200):
            if collector.last_report is not None:
                break
            await asyncio.sleep(0.01)
        await collector.stop()

        assert collector.last_report is not None
        assert collector.is_running is False

    async def test_source_errors_do_not_stop_the_loop(self, session_factory):
        calls = []

        def flaky(request):
            calls.append(request)
            return httpx.Response(502)

        collector = scheduler(session_factory, source_for(flaky))
        collector.interval = 0.01
        collector.start()
        for _ in range(200):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await collector.stop()

        assert len(calls) >= 2
        assert collector.last_report.status == "source_error"

    async def test_stop_without_start_is_noop(self, session_factory):
        await scheduler(session_factory, static_source("")).stop()


async def _threshold(db) -> AlertThreshold:
    threshold = AlertThreshold(
        name="5xx spike", metric_type="errors_5xx_rate", operator="gt", threshold_value=2.0,
    )
    db.add(threshold)
    await db.commit()
    return threshold

"""
代理指标采集调度任务 (Proxy Metrics Collection Scheduler)

按固定间隔执行一轮采集：拉取 → 解析 → 聚合 → 推导速率 → 持久化 → 规则评估 → 通知。
同一时刻只允许一轮在执行（进程内 asyncio.Lock，多实例时再加 Redis SET NX EX 锁），
上一轮未结束时新的触发直接跳过而不是排队。

错误分级：
- 指标源不可用：本轮中止，不写入任何记录
- 持久化失败：记录日志，仍用内存中的聚合结果评估规则
- 其他异常：记录日志，调度继续
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import async_session
from app.core.exceptions import MetricsSourceError
from app.core.redis import get_redis
from app.services.aggregator import aggregate, derive_request_rates
from app.services.exposition_parser import parse
from app.services.metrics_store import MetricsStore
from app.services.notifier import NotificationDispatcher
from app.services.proxy_client import ProxyMetricsSource
from app.services.threshold_engine import ThresholdEngine

logger = logging.getLogger(__name__)

LOCK_KEY = "edgewatch:collector:lock"


@dataclass
class CycleReport:
    """一轮采集的结果摘要。status: ok / source_error / persist_error / error"""
    status: str = "ok"
    samples: int = 0
    aggregates: int = 0
    saved: int = 0
    alerts_created: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class CollectionScheduler:
    """
    采集调度器，持有自己的周期、停止事件和单飞保护。

    Args:
        source: 指标源，默认按配置创建 ProxyMetricsSource
        session_factory: 会话工厂，默认使用全局 async_session
        interval: 采集间隔秒数，默认取配置
        use_redis_lock: 是否使用 Redis 跨实例锁，默认取配置
        redis_getter: 返回 Redis 客户端的协程函数
        notify_transport: 通知渠道使用的 httpx 传输层（测试注入）
    """

    def __init__(
        self,
        source: Optional[ProxyMetricsSource] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        interval: Optional[float] = None,
        use_redis_lock: Optional[bool] = None,
        redis_getter: Optional[Callable[[], Awaitable]] = None,
        notify_transport=None,
    ):
        self.source = source or ProxyMetricsSource()
        self.session_factory = session_factory or async_session
        self.interval = interval if interval is not None else settings.collector_interval_seconds
        self.use_redis_lock = settings.collector_distributed_lock if use_redis_lock is None else use_redis_lock
        self.redis_getter = redis_getter or get_redis
        self.notify_transport = notify_transport
        self.last_report: Optional[CycleReport] = None

        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_in_progress(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        """启动后台采集循环，已在运行时不重复启动。"""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Proxy metrics collector started, interval=%ss", self.interval)

    async def stop(self, timeout: float = 30) -> None:
        """停止后台循环，等待当前周期结束，超时则取消。"""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Collector did not stop within %ss, cancelling", timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Proxy metrics collector stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.trigger()
            except Exception:
                logger.exception("Proxy metrics collection error")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def trigger(self) -> Optional[CycleReport]:
        """
        触发一轮采集。

        Returns:
            CycleReport，或 None 表示已有一轮在执行（本进程或其他实例），本次跳过
        """
        if self._lock.locked():
            logger.info("Collection cycle still running, tick skipped")
            return None

        async with self._lock:
            token = await self._acquire_distributed_lock()
            if token is False:
                logger.info("Collection cycle running on another instance, tick skipped")
                return None
            try:
                report = await self.run_cycle()
            finally:
                if token:
                    await self._release_distributed_lock(token)
            self.last_report = report
            return report

    async def _acquire_distributed_lock(self):
        """返回锁令牌；False 表示被其他实例持有；None 表示未使用或 Redis 不可用。"""
        if not self.use_redis_lock:
            return None
        token = uuid.uuid4().hex
        ttl = max(int(self.interval * 2), 60)
        try:
            redis = await self.redis_getter()
            acquired = await redis.set(LOCK_KEY, token, nx=True, ex=ttl)
        except Exception as e:
            logger.warning("Redis lock unavailable, using in-process guard only: %s", e)
            return None
        return token if acquired else False

    async def _release_distributed_lock(self, token: str) -> None:
        try:
            redis = await self.redis_getter()
            if await redis.get(LOCK_KEY) == token:
                await redis.delete(LOCK_KEY)
        except Exception as e:
            logger.warning("Failed to release collector lock: %s", e)

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """执行一轮完整采集，不加锁，调用方负责单飞。"""
        now = now or datetime.now(timezone.utc)
        report = CycleReport(started_at=now)

        try:
            text = await self.source.fetch_metrics_text()
        except MetricsSourceError as e:
            logger.warning("Proxy metrics source unavailable: %s", e)
            report.status = "source_error"
            report.error = str(e)
            report.finished_at = datetime.now(timezone.utc)
            return report

        try:
            samples = parse(text)
            aggregates = aggregate(samples, collected_at=now)
            report.samples = len(samples)
            report.aggregates = len(aggregates)

            async with self.session_factory() as db:
                store = MetricsStore(db)
                aggregates = await self._with_rates(db, store, aggregates)

                try:
                    report.saved = await store.save(aggregates)
                    await db.commit()
                except SQLAlchemyError as e:
                    logger.exception("Failed to persist proxy metrics, evaluating in-memory aggregates")
                    await db.rollback()
                    report.saved = 0
                    report.status = "persist_error"
                    report.error = str(e)

                dispatcher = NotificationDispatcher(db, transport=self.notify_transport)
                alerts = await ThresholdEngine(db, dispatcher=dispatcher).evaluate(aggregates, now=now)
                await db.commit()
                report.alerts_created = len(alerts)
        except Exception as e:
            logger.exception("Proxy metrics collection cycle failed")
            report.status = "error"
            report.error = str(e)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Collection cycle %s: %d samples, %d services, %d saved, %d alerts",
            report.status, report.samples, report.aggregates, report.saved, report.alerts_created,
        )
        return report

    async def _with_rates(self, db: AsyncSession, store: MetricsStore, aggregates):
        """基于上一条持久化记录推导速率，查询失败时速率保持为 0。"""
        try:
            previous = await store.latest_per_service([a.service_name for a in aggregates])
        except SQLAlchemyError:
            logger.exception("Failed to load previous aggregates, request rates left at 0")
            await db.rollback()
            return aggregates
        return derive_request_rates(aggregates, previous)

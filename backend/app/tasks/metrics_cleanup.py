"""
代理指标清理任务模块。

定期删除超过保留期限的代理指标记录，防止时序数据无限增长。
保留天数和执行周期由 METRICS_RETENTION_DAYS / METRICS_CLEANUP_INTERVAL_SECONDS 配置。
"""
import asyncio
import logging
from typing import Optional

from app.core.config import settings
from app.core.database import async_session
from app.services.metrics_store import MetricsStore

logger = logging.getLogger(__name__)


async def run_metrics_cleanup(retention_days: int, session_factory=None) -> int:
    """执行一次清理并提交，返回删除条数。"""
    session_factory = session_factory or async_session
    async with session_factory() as db:
        deleted = await MetricsStore(db).prune_older_than(retention_days)
        await db.commit()
    return deleted


async def metrics_cleanup_loop(
    retention_days: Optional[int] = None,
    interval_seconds: Optional[int] = None,
    session_factory=None,
):
    """代理指标清理后台循环，默认每小时执行一次。

    Args:
        retention_days: 数据保留天数，超过此天数的记录将被删除
        interval_seconds: 两次清理之间的间隔
    """
    retention_days = settings.metrics_retention_days if retention_days is None else retention_days
    interval_seconds = interval_seconds or settings.metrics_cleanup_interval_seconds
    while True:
        try:
            await run_metrics_cleanup(retention_days, session_factory)
        except Exception:
            logger.exception("Proxy metric cleanup error")
        await asyncio.sleep(interval_seconds)

"""
EdgeWatch 后端应用入口模块 (EdgeWatch Backend Application Entry Module)

Wiki 反向代理遥测与告警服务的主应用入口，负责 FastAPI 应用的生命周期管理。
包含数据库初始化、路由注册、采集调度器和数据清理后台任务的启停。

Main application entry point for the wiki's reverse-proxy telemetry and alerting
service. Handles database initialization, route registration, and the startup
and shutdown of the collection scheduler and the retention task.

主要功能 (Main Features):
- 数据库表自动创建 (Automatic database table creation)
- 代理指标定时采集、阈值评估和告警通知 (Scheduled collection, threshold evaluation, notification)
- 过期指标定期清理 (Periodic pruning of expired metrics)
- 健康检查 (Health checks)
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.core.config import settings as app_settings
from app.core.database import Base, engine
from app.core.exceptions import register_exception_handlers
from app.core.redis import close_redis, get_redis
# 导入所有模型以确保 SQLAlchemy 表注册 (Import all models to ensure SQLAlchemy table registration)
from app.models import Alert, AlertThreshold, NotificationIntegration, NotificationLog, ProxyMetric  # noqa: F401
from app.routers import alert_thresholds, alerts, notification_integrations, proxy_metrics

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器 (Application Lifecycle Manager)

    启动时建表并启动采集调度器与清理任务，关闭时停止任务并释放连接。

    Creates tables and starts the collector and cleanup task on startup; stops
    them and releases connections on shutdown.
    """
    from app.tasks.collector import CollectionScheduler
    from app.tasks.metrics_cleanup import metrics_cleanup_loop

    # 自动创建数据库表结构 (Automatically create database table structure)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # 采集调度器挂在 app.state 上，手动采集接口与定时任务共用同一单飞保护
    collector = CollectionScheduler()
    app.state.collector = collector
    if app_settings.proxy_enabled:
        collector.start()
    else:
        logger.info("Proxy metrics collection disabled (PROXY_ENABLED=false)")

    # 过期指标清理任务 (Expired metric cleanup task)
    cleanup_task = asyncio.create_task(metrics_cleanup_loop(app_settings.metrics_retention_days))

    yield

    # 关闭阶段：停止任务并释放资源 (Shutdown Phase: stop tasks and release resources)
    await collector.stop()
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    await close_redis()
    await engine.dispose()


# 创建 FastAPI 应用实例 (Create FastAPI application instance)
app = FastAPI(
    title="EdgeWatch",
    description="Reverse-proxy telemetry and alerting for the wiki | Wiki 反向代理遥测与告警服务",
    version="0.1.0",
    lifespan=lifespan,
)

# 注册全局异常处理器 (Register global exception handlers)
register_exception_handlers(app)

# 生产环境下的 CORS 配置更加严格 (Stricter CORS configuration in production)
is_production = app_settings.environment.lower() == "production"
allowed_origins = ["*"] if not is_production else [
    os.getenv("FRONTEND_URL", "http://localhost:3000"),
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# 注册 API 路由模块 (Register API router modules)
app.include_router(proxy_metrics.router)  # 代理指标 (Proxy metrics)
app.include_router(alert_thresholds.router)  # 阈值规则 (Alert thresholds)
app.include_router(alerts.router)  # 告警管理 (Alert management)
app.include_router(notification_integrations.router)  # 通知集成 (Notification integrations)


@app.get("/health")
@app.get("/api/v1/health")
async def health():
    """
    健康检查接口 (Health Check Endpoint)

    检查数据库和 Redis 连通性，任一组件异常时返回 degraded。

    Returns:
        dict: 包含各组件状态和时间戳的健康检查结果 (Health check results with component status and timestamp)
    """
    checks = {"api": "ok"}

    # 数据库连通性检查 (Database connectivity check)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"

    # Redis 连通性检查 (Redis connectivity check)
    try:
        r = await get_redis()
        await r.ping()
        checks["redis"] = "ok"
    except Exception:
        checks["redis"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"

    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式创建数据库引擎和会话工厂，为 EdgeWatch 提供持久化支持。
包含异步引擎、会话工厂、ORM 基类和 FastAPI 依赖注入函数。

Creates the async database engine and session factory on SQLAlchemy 2.0,
with the ORM base class and the FastAPI session dependency.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

# 创建异步数据库引擎 (Create Async Database Engine)
engine = create_async_engine(
    settings.database_url,
    echo=False  # 生产环境关闭 SQL 日志输出 (Disable SQL logging in production)
)

# 创建异步会话工厂，提交后不过期对象 (Async session factory, objects survive commit)
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """ORM 模型基类 (ORM Model Base Class)，所有数据模型都继承此类。"""
    pass


async def get_db() -> AsyncSession:
    """
    FastAPI 依赖项：获取数据库会话 (FastAPI Dependency: Get Database Session)

    使用异步上下文管理器确保会话在请求结束后关闭，防止连接泄漏。

    Yields:
        AsyncSession: 异步数据库会话实例 (Async database session instance)
    """
    async with async_session() as session:
        yield session

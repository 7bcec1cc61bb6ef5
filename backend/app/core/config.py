"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 EdgeWatch 的所有配置项，支持从 .env 文件和环境变量读取。
涵盖数据库、Redis、JWT、反向代理指标源、采集调度、数据保留和站内通知等配置。

Uses Pydantic Settings to manage all EdgeWatch configuration items, read from
.env files and environment variables. Covers database, Redis, JWT, the reverse-proxy
metrics source, collection scheduling, retention and the owner notification sink.
"""
import logging
import secrets

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names map to same-named environment variables (case insensitive),
    with .env file support.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "edgewatch"  # 数据库名称 (Database Name)
    postgres_user: str = "edgewatch"  # 数据库用户名 (Database Username)
    postgres_password: str = "edgewatch_dev_password"  # 数据库密码 (Database Password)

    # Redis 配置 (Redis Configuration)
    redis_host: str = "localhost"  # Redis 主机地址 (Redis Host)
    redis_port: int = 6379  # Redis 端口号 (Redis Port)

    # JWT 认证配置 (JWT Authentication Configuration)
    # ⚠️ 生产环境必须通过环境变量 JWT_SECRET_KEY 设置，且需与 Wiki 主站签发令牌所用密钥一致
    # ⚠️ MUST match the key the wiki uses to sign its tokens in production.
    jwt_secret_key: str = ""  # JWT 签名密钥 (JWT Secret Key)
    jwt_algorithm: str = "HS256"  # JWT 算法 (JWT Algorithm)
    jwt_access_token_expire_minutes: int = 120  # 访问令牌过期时间（分钟） (Access Token Expiry Minutes)

    # 反向代理指标源配置 (Reverse Proxy Metrics Source Configuration)
    proxy_enabled: bool = True  # 是否启用指标采集 (Enable Metrics Collection)
    proxy_api_url: str = "http://localhost:8080"  # 代理 API 基础地址 (Proxy API Base URL)
    proxy_metrics_path: str = "/metrics"  # 指标暴露路径 (Metrics Exposition Path)
    proxy_api_user: str = ""  # Basic Auth 用户名 (Basic Auth Username)
    proxy_api_password: str = ""  # Basic Auth 密码 (Basic Auth Password)
    proxy_timeout_seconds: float = 10.0  # 单次请求超时（秒） (Per-request Timeout in Seconds)

    # 采集调度配置 (Collection Scheduler Configuration)
    collector_interval_seconds: int = 60  # 采集周期（秒） (Collection Interval in Seconds)
    collector_distributed_lock: bool = True  # 是否使用 Redis 跨实例锁 (Use Redis Cross-instance Lock)

    # 数据保留配置 (Data Retention Configuration)
    metrics_retention_days: int = 30  # 代理指标保留天数 (Proxy Metric Retention Days)
    metrics_cleanup_interval_seconds: int = 3600  # 清理任务周期（秒） (Cleanup Interval in Seconds)

    # 通知配置 (Notification Configuration)
    notification_timeout_seconds: float = 10.0  # 单个渠道调用超时（秒） (Per-channel Call Timeout in Seconds)
    owner_notify_url: str = ""  # 站内所有者通知接收地址 (Owner Inbox Endpoint)
    owner_notify_token: str = ""  # 站内通知鉴权令牌 (Owner Inbox Bearer Token)
    telegram_api_base: str = "https://api.telegram.org"  # Telegram Bot API 基础地址 (Telegram Bot API Base)
    notification_footer: str = "EdgeWatch Alerts"  # 通知页脚 (Notification Footer)

    environment: str = "development"  # 运行环境：development/production (Runtime Environment)

    @property
    def database_url(self) -> str:
        """
        构造 PostgreSQL 异步连接 URL (Build PostgreSQL Async Connection URL)

        生成适用于 asyncpg 驱动的连接字符串，供 SQLAlchemy 异步引擎使用。
        """
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """构造 Redis 连接 URL (Build Redis Connection URL)，默认使用 0 号库。"""
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Pydantic Config: Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

# JWT 密钥安全检查：未设置时生成随机密钥并警告
if not settings.jwt_secret_key or settings.jwt_secret_key == "change-me-in-production":
    settings.jwt_secret_key = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY 未设置，已自动生成随机密钥，Wiki 签发的令牌将无法通过校验。"
        " | JWT_SECRET_KEY not set, using auto-generated random key. "
        "Tokens issued by the wiki will be rejected until it is configured."
    )

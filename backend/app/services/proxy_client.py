"""
反向代理指标源客户端 (Reverse Proxy Metrics Source Client)

通过 HTTP GET 拉取代理的指标暴露文本，支持可选的 Basic Auth 和有界超时。
网络错误、超时和非 2xx 响应统一抛出 MetricsSourceError，由采集调度器在周期边界处理。
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import MetricsSourceError

logger = logging.getLogger(__name__)

VERSION_PATH = "/api/version"


@dataclass
class ProxyHealth:
    healthy: bool
    version: Optional[str] = None
    error: Optional[str] = None


class ProxyMetricsSource:
    """
    代理指标源

    Args:
        base_url: 代理 API 基础地址，默认取配置
        metrics_path: 指标路径，默认取配置
        transport: 可选的 httpx 传输层（测试时注入 MockTransport）
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        metrics_path: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.proxy_api_url).rstrip("/")
        self.metrics_path = "/" + (metrics_path or settings.proxy_metrics_path).lstrip("/")
        self.username = username if username is not None else settings.proxy_api_user
        self.password = password if password is not None else settings.proxy_api_password
        self.timeout = timeout if timeout is not None else settings.proxy_timeout_seconds
        self.transport = transport

    @property
    def metrics_url(self) -> str:
        return f"{self.base_url}{self.metrics_path}"

    def _client(self) -> httpx.AsyncClient:
        auth = httpx.BasicAuth(self.username, self.password) if self.username else None
        return httpx.AsyncClient(timeout=self.timeout, auth=auth, transport=self.transport)

    async def fetch_metrics_text(self) -> str:
        """拉取指标文本，失败时抛出 MetricsSourceError。"""
        try:
            async with self._client() as client:
                resp = await client.get(self.metrics_url)
        except httpx.TimeoutException as e:
            raise MetricsSourceError(f"Metrics request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise MetricsSourceError(f"Metrics request failed: {e}") from e

        if not resp.is_success:
            raise MetricsSourceError(
                f"Metrics endpoint returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        return resp.text

    async def check_health(self) -> ProxyHealth:
        """探测代理 /api/version，不抛异常。"""
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.base_url}{VERSION_PATH}")
        except httpx.HTTPError as e:
            logger.warning("Proxy health probe failed: %s", e)
            return ProxyHealth(healthy=False, error=str(e) or type(e).__name__)

        if not resp.is_success:
            return ProxyHealth(healthy=False, error=f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            data = None
        version = data.get("Version") if isinstance(data, dict) else None
        return ProxyHealth(healthy=True, version=version)

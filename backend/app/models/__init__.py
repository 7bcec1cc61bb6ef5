"""
数据模型包 (Data Models Package)

集中导出 EdgeWatch 的所有 SQLAlchemy ORM 模型：代理聚合指标、阈值规则、告警事件、
聊天集成配置和通知日志。

Central export of every EdgeWatch ORM model: proxy aggregates, threshold rules,
alert events, chat integrations and the notification log.
"""
from app.models.proxy_metric import ProxyMetric
from app.models.alert import Alert, AlertThreshold
from app.models.notification import NotificationIntegration, NotificationLog

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = [
    "ProxyMetric", "Alert", "AlertThreshold", "NotificationIntegration", "NotificationLog",
]

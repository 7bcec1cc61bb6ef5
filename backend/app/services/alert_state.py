"""
告警状态机 (Alert State Machine)

triggered → acknowledged（可选，人工确认） → resolved（终态），triggered 也可直接 resolved。
resolved 之后不允许任何流转，非法流转抛出 ConflictError。
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import ConflictError
from app.models.alert import Alert

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "triggered": {"acknowledged", "resolved"},
    "acknowledged": {"resolved"},
    "resolved": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def _transition(alert: Alert, target: str) -> None:
    if not can_transition(alert.status, target):
        raise ConflictError(
            f"Alert {alert.id} cannot move from {alert.status} to {target}",
            detail=f"allowed: {sorted(TRANSITIONS.get(alert.status, set())) or 'none'}",
        )
    alert.status = target


def acknowledge(alert: Alert, user_id: int, now: Optional[datetime] = None) -> Alert:
    """确认告警，记录确认人和时间。"""
    _transition(alert, "acknowledged")
    alert.acknowledged_by_id = user_id
    alert.acknowledged_at = now or datetime.now(timezone.utc)
    logger.info("Alert %s acknowledged by user %s", alert.id, user_id)
    return alert


def resolve(alert: Alert, now: Optional[datetime] = None) -> Alert:
    """解决告警，记录解决时间。"""
    _transition(alert, "resolved")
    alert.resolved_at = now or datetime.now(timezone.utc)
    logger.info("Alert %s resolved", alert.id)
    return alert

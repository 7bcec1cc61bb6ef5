"""告警状态机测试。"""
from datetime import datetime, timezone

import pytest

from app.core.exceptions import ConflictError
from app.models.alert import Alert
from app.services.alert_state import acknowledge, can_transition, resolve

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _alert(status="triggered") -> Alert:
    return Alert(
        id=1,
        threshold_id=1,
        service_name="wiki",
        metric_type="latency_avg",
        severity="warning",
        current_value=900,
        threshold_value=500,
        status=status,
        message="slow",
    )


class TestTransitions:
    @pytest.mark.parametrize("current,target,allowed", [
        ("triggered", "acknowledged", True),
        ("triggered", "resolved", True),
        ("acknowledged", "resolved", True),
        ("acknowledged", "triggered", False),
        ("acknowledged", "acknowledged", False),
        ("resolved", "triggered", False),
        ("resolved", "acknowledged", False),
        ("resolved", "resolved", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_acknowledge_stamps_user_and_time(self):
        alert = acknowledge(_alert(), user_id=42, now=NOW)
        assert alert.status == "acknowledged"
        assert alert.acknowledged_by_id == 42
        assert alert.acknowledged_at == NOW

    def test_resolve_from_triggered(self):
        alert = resolve(_alert(), now=NOW)
        assert alert.status == "resolved"
        assert alert.resolved_at == NOW

    def test_resolve_after_acknowledge(self):
        alert = resolve(acknowledge(_alert(), user_id=7, now=NOW), now=NOW)
        assert alert.status == "resolved"
        assert alert.acknowledged_by_id == 7

    def test_resolved_is_terminal(self):
        alert = _alert("resolved")
        with pytest.raises(ConflictError):
            acknowledge(alert, user_id=1)
        with pytest.raises(ConflictError):
            resolve(alert)
        assert alert.status == "resolved"

    def test_double_acknowledge_rejected(self):
        alert = acknowledge(_alert(), user_id=1, now=NOW)
        with pytest.raises(ConflictError):
            acknowledge(alert, user_id=2)
        assert alert.acknowledged_by_id == 1

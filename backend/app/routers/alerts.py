"""
告警管理路由模块 (Alert Management Router)

功能说明：提供告警生命周期管理接口
核心职责：
  - 分页查询告警列表（支持状态、服务、严重级别过滤）
  - 获取单个告警的详细信息
  - 告警确认与解决（经由告警状态机，非法流转返回 409）
  - 手动按各服务最新统计评估一次阈值规则
API端点：GET /alerts, GET /alerts/{id}, POST /alerts/{id}/ack, POST /alerts/{id}/resolve, POST /alerts/check
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user_id
from app.models.alert import Alert
from app.schemas.alert import AlertResponse
from app.services import alert_state
from app.services.notifier import NotificationDispatcher
from app.services.threshold_engine import ThresholdEngine

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


async def _get_alert(db: AsyncSession, alert_id: int) -> Alert:
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    alert = result.scalar_one_or_none()
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@router.get("", response_model=dict)
async def list_alerts(
    status: Optional[str] = None,
    service_name: Optional[str] = None,
    severity: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """
    告警列表查询接口 (Alert List Query)

    分页查询告警记录，按创建时间倒序排列。

    Args:
        status: 告警状态筛选（triggered/acknowledged/resolved）
        service_name: 服务名筛选
        severity: 严重级别筛选（warning/critical）
        page: 页码，从1开始
        page_size: 每页数量，限制1-100之间
    Returns:
        dict: 包含告警列表、总数、分页信息的响应
    """
    q = select(Alert)
    count_q = select(func.count(Alert.id))

    filters = []
    if status:
        filters.append(Alert.status == status)
    if service_name:
        filters.append(Alert.service_name == service_name)
    if severity:
        filters.append(Alert.severity == severity)

    if filters:
        q = q.where(and_(*filters))
        count_q = count_q.where(and_(*filters))

    total = (await db.execute(count_q)).scalar()
    q = q.order_by(Alert.created_at.desc(), Alert.id.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(q)
    alerts = result.scalars().all()

    return {
        "items": [AlertResponse.model_validate(a).model_dump(mode="json") for a in alerts],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/check", response_model=list[AlertResponse])
async def check_thresholds(
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """
    手动评估阈值规则 (Check Thresholds Now)

    用每个服务最近一条持久化统计评估所有已启用规则，遵守冷却期，返回新建的告警。
    """
    engine = ThresholdEngine(db, dispatcher=NotificationDispatcher(db))
    alerts = await engine.check_latest()
    await db.commit()
    return alerts


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    return await _get_alert(db, alert_id)


@router.post("/{alert_id}/ack", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """
    告警确认操作接口 (Alert Acknowledgment)

    Raises:
        HTTPException 404: 告警记录不存在
        ConflictError 409: 告警已确认或已解决
    """
    alert = await _get_alert(db, alert_id)
    alert_state.acknowledge(alert, user_id)
    await db.commit()
    await db.refresh(alert)
    return alert


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """解决告警；已解决的告警返回 409。"""
    alert = await _get_alert(db, alert_id)
    alert_state.resolve(alert)
    await db.commit()
    await db.refresh(alert)
    return alert

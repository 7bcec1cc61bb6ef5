"""
告警阈值规则路由模块 (Alert Threshold Router)

功能说明：阈值规则的增删改查。规则绑定一个服务或全部服务，
按指标类型和比较运算符判断是否触发，触发后进入冷却期。
API端点：GET/POST /alert-thresholds, GET/PUT/DELETE /alert-thresholds/{id}
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user_id
from app.core.exceptions import ValidationError
from app.models.alert import AlertThreshold
from app.schemas.alert import AlertThresholdCreate, AlertThresholdResponse, AlertThresholdUpdate

router = APIRouter(prefix="/api/v1/alert-thresholds", tags=["alert-thresholds"])


async def _get_threshold(db: AsyncSession, threshold_id: int) -> AlertThreshold:
    result = await db.execute(select(AlertThreshold).where(AlertThreshold.id == threshold_id))
    threshold = result.scalar_one_or_none()
    if not threshold:
        raise HTTPException(status_code=404, detail="Alert threshold not found")
    return threshold


@router.get("", response_model=List[AlertThresholdResponse])
async def list_thresholds(
    is_enabled: Optional[bool] = None,
    service_name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """阈值规则列表，按 ID 升序，可按启用状态和服务过滤。"""
    q = select(AlertThreshold).order_by(AlertThreshold.id)
    if is_enabled is not None:
        q = q.where(AlertThreshold.is_enabled == is_enabled)
    if service_name:
        q = q.where(AlertThreshold.service_name == service_name)
    result = await db.execute(q)
    return result.scalars().all()


@router.post("", response_model=AlertThresholdResponse, status_code=status.HTTP_201_CREATED)
async def create_threshold(
    data: AlertThresholdCreate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """创建阈值规则，记录创建人。"""
    threshold = AlertThreshold(**data.model_dump(), created_by_id=user_id)
    db.add(threshold)
    await db.commit()
    await db.refresh(threshold)
    return threshold


@router.get("/{threshold_id}", response_model=AlertThresholdResponse)
async def get_threshold(
    threshold_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    return await _get_threshold(db, threshold_id)


@router.put("/{threshold_id}", response_model=AlertThresholdResponse)
async def update_threshold(
    threshold_id: int,
    data: AlertThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """
    更新阈值规则，只修改请求中出现的字段。

    Raises:
        HTTPException 404: 规则不存在
        ValidationError: 更新后开启了 Webhook 通知却没有 webhook_url
    """
    threshold = await _get_threshold(db, threshold_id)

    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(threshold, field, value)

    if threshold.notify_webhook and not threshold.webhook_url:
        raise ValidationError("webhook_url is required when notify_webhook is enabled")

    await db.commit()
    await db.refresh(threshold)
    return threshold


@router.delete("/{threshold_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_threshold(
    threshold_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """删除阈值规则，已产生的告警保留。"""
    threshold = await _get_threshold(db, threshold_id)
    await db.delete(threshold)
    await db.commit()

"""
通知集成路由模块 (Notification Integration Router)

功能说明：管理 Telegram / Slack 聊天机器人集成，发送测试消息，查询通知发送日志
核心职责：
  - 集成 CRUD，配置按 provider 标签联合类型校验
  - 测试发送并记录最近测试结果
  - 通知日志分页查询（按渠道、告警、成功与否过滤）
API端点：GET/POST /notification-integrations, PUT/DELETE /notification-integrations/{id},
        POST /notification-integrations/{id}/test, GET /notification-integrations/logs
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_user_id
from app.core.exceptions import ValidationError
from app.models.notification import NotificationIntegration, NotificationLog
from app.schemas.notification import (
    NotificationIntegrationCreate,
    NotificationIntegrationResponse,
    NotificationIntegrationUpdate,
    NotificationLogResponse,
    NotificationResultResponse,
)
from app.services.notifier import NotificationDispatcher

router = APIRouter(prefix="/api/v1/notification-integrations", tags=["notifications"])


async def _get_integration(db: AsyncSession, integration_id: int) -> NotificationIntegration:
    result = await db.execute(
        select(NotificationIntegration).where(NotificationIntegration.id == integration_id)
    )
    integration = result.scalar_one_or_none()
    if not integration:
        raise HTTPException(status_code=404, detail="Notification integration not found")
    return integration


@router.get("/logs", response_model=dict)
async def list_notification_logs(
    provider: Optional[str] = None,
    alert_id: Optional[int] = None,
    success: Optional[bool] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """通知发送日志，按发送时间倒序分页。"""
    q = select(NotificationLog)
    count_q = select(func.count(NotificationLog.id))

    filters = []
    if provider:
        filters.append(NotificationLog.provider == provider)
    if alert_id is not None:
        filters.append(NotificationLog.alert_id == alert_id)
    if success is not None:
        filters.append(NotificationLog.success == success)
    if filters:
        q = q.where(and_(*filters))
        count_q = count_q.where(and_(*filters))

    total = (await db.execute(count_q)).scalar()
    q = q.order_by(NotificationLog.id.desc()).offset((page - 1) * page_size).limit(page_size)
    logs = (await db.execute(q)).scalars().all()
    return {
        "items": [NotificationLogResponse.model_validate(log).model_dump(mode="json") for log in logs],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("", response_model=List[NotificationIntegrationResponse])
async def list_integrations(
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    result = await db.execute(select(NotificationIntegration).order_by(NotificationIntegration.id))
    return result.scalars().all()


@router.post("", response_model=NotificationIntegrationResponse, status_code=status.HTTP_201_CREATED)
async def create_integration(
    data: NotificationIntegrationCreate,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """创建集成，provider 取自已校验的 config。"""
    integration = NotificationIntegration(
        name=data.name,
        provider=data.config.provider,
        config=data.config.model_dump(),
        is_enabled=data.is_enabled,
    )
    db.add(integration)
    await db.commit()
    await db.refresh(integration)
    return integration


@router.put("/{integration_id}", response_model=NotificationIntegrationResponse)
async def update_integration(
    integration_id: int,
    data: NotificationIntegrationUpdate,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """
    更新集成。config 需整体提交，且不能更换 provider。
    """
    integration = await _get_integration(db, integration_id)
    updates = data.model_dump(exclude_unset=True, exclude={"config"})
    for field, value in updates.items():
        setattr(integration, field, value)

    if data.config is not None:
        if data.config.provider != integration.provider:
            raise ValidationError(
                "Integration provider cannot be changed",
                detail=f"{integration.provider} -> {data.config.provider}",
            )
        integration.config = data.config.model_dump()

    await db.commit()
    await db.refresh(integration)
    return integration


@router.delete("/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    integration_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    integration = await _get_integration(db, integration_id)
    await db.delete(integration)
    await db.commit()


@router.post("/{integration_id}/test", response_model=NotificationResultResponse)
async def test_integration(
    integration_id: int,
    db: AsyncSession = Depends(get_db),
    _user_id: int = Depends(get_current_user_id),
):
    """发送测试消息，发送失败也返回 200，结果在 success/error 中。"""
    integration = await _get_integration(db, integration_id)
    result = await NotificationDispatcher(db).send_test(integration)
    await db.commit()
    return result

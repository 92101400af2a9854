from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl

from plumbtix.dependencies.auth import CurrentUser
from plumbtix.dependencies.services import (
    ContractorUser,
    DeliveryLogDep,
    DispatcherDep,
    InviterUser,
    NotificationQueueDep,
    PreferenceRepositoryDep,
    SettingsDep,
)
from plumbtix.events import InvitationSent
from plumbtix.notifications.models import DeliveryStatus, NotificationType, TemplateName, is_app_link
from plumbtix.tickets.state import UserRole

router = APIRouter(prefix="/notifications", tags=["notifications"])


class PreferenceModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_type: NotificationType
    enabled: bool


class PreferenceUpdateRequest(BaseModel):
    preferences: list[PreferenceModel] = Field(min_length=1)


class DeliveryLogEntryModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient_email: str
    recipient_user_id: str | None
    notification_type: NotificationType
    template: TemplateName
    subject: str
    status: DeliveryStatus
    provider_message_id: str | None
    error_message: str | None
    related_ticket_id: str | None
    created_at: datetime
    updated_at: datetime


class ProviderStatusRequest(BaseModel):
    status: Literal["delivered", "bounced"]


class InvitationRequest(BaseModel):
    email: EmailStr
    company_name: str = Field(min_length=1, max_length=255)
    role: UserRole
    invitation_url: HttpUrl | None = None


@router.get("/preferences", response_model=list[PreferenceModel])
async def get_preferences(user: CurrentUser, preferences: PreferenceRepositoryDep) -> list[PreferenceModel]:
    stored = await preferences.list_preferences(user.user_id)
    return [PreferenceModel.model_validate(item) for item in stored]


@router.put("/preferences", response_model=list[PreferenceModel])
async def update_preferences(
    payload: PreferenceUpdateRequest,
    user: CurrentUser,
    preferences: PreferenceRepositoryDep,
) -> list[PreferenceModel]:
    for item in payload.preferences:
        await preferences.set_preference(user.user_id, item.notification_type, item.enabled)
    stored = await preferences.list_preferences(user.user_id)
    return [PreferenceModel.model_validate(item) for item in stored]


@router.get("/deliveries", response_model=list[DeliveryLogEntryModel], summary="Delivery audit log")
async def list_deliveries(
    user: ContractorUser,
    delivery_log: DeliveryLogDep,
    ticket_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[DeliveryLogEntryModel]:
    entries = await delivery_log.list_entries(ticket_id=ticket_id, limit=limit)
    return [DeliveryLogEntryModel.model_validate(entry) for entry in entries]


@router.post("/deliveries/{provider_message_id}/status", summary="Provider delivery callback")
async def record_provider_status(
    provider_message_id: str,
    payload: ProviderStatusRequest,
    user: ContractorUser,
    dispatcher: DispatcherDep,
) -> dict[str, int | str]:
    updated = await dispatcher.record_provider_status(provider_message_id, DeliveryStatus(payload.status))
    if not updated:
        raise HTTPException(status_code=404, detail="Unknown provider message id")
    return {"provider_message_id": provider_message_id, "updated": updated}


@router.post("/invitations", status_code=status.HTTP_202_ACCEPTED)
async def send_invitation(
    payload: InvitationRequest,
    user: InviterUser,
    queue: NotificationQueueDep,
    settings: SettingsDep,
) -> dict[str, str]:
    if payload.role is UserRole.PROROTO_ADMIN and not user.role.is_contractor:
        raise HTTPException(status_code=403, detail="Only Pro Roto admin can invite contractor staff")
    invitation_url = str(payload.invitation_url) if payload.invitation_url else None
    if invitation_url and not is_app_link(invitation_url, settings.app_url):
        raise HTTPException(status_code=422, detail=f"invitation_url must start with {settings.app_url}")
    queue.publish(
        InvitationSent(
            email=str(payload.email),
            company_name=payload.company_name,
            role=payload.role,
            invited_by=user.as_actor(),
            invitation_url=invitation_url,
        )
    )
    return {"status": "queued", "email": str(payload.email)}

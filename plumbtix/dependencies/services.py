from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from plumbtix.core.config import Settings, get_settings
from plumbtix.dependencies.auth import User, role_required
from plumbtix.notifications.dispatcher import NotificationDispatcher
from plumbtix.notifications.queue import NotificationQueue
from plumbtix.notifications.repository import DeliveryLogRepository, PreferenceRepository
from plumbtix.tickets.service import TicketWorkflowService
from plumbtix.tickets.state import UserRole

require_contractor = role_required(UserRole.PROROTO_ADMIN)
require_inviter = role_required(UserRole.PROROTO_ADMIN, UserRole.PM_ADMIN)

ContractorUser = Annotated[User, Depends(require_contractor)]
InviterUser = Annotated[User, Depends(require_inviter)]


def _state_service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return service


async def get_ticket_service(request: Request) -> TicketWorkflowService:
    return _state_service(request, "ticket_service", "Ticket service")


async def get_preference_repository(request: Request) -> PreferenceRepository:
    return _state_service(request, "preference_repository", "Notification preferences")


async def get_delivery_log(request: Request) -> DeliveryLogRepository:
    return _state_service(request, "delivery_log", "Delivery log")


async def get_dispatcher(request: Request) -> NotificationDispatcher:
    return _state_service(request, "notification_dispatcher", "Notification dispatcher")


async def get_notification_queue(request: Request) -> NotificationQueue:
    return _state_service(request, "notification_queue", "Notification queue")


TicketServiceDep = Annotated[TicketWorkflowService, Depends(get_ticket_service)]
PreferenceRepositoryDep = Annotated[PreferenceRepository, Depends(get_preference_repository)]
DeliveryLogDep = Annotated[DeliveryLogRepository, Depends(get_delivery_log)]
DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
NotificationQueueDep = Annotated[NotificationQueue, Depends(get_notification_queue)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

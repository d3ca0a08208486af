# carhire/services/booking_api/routes.py
"""
HTTP и WebSocket маршруты Booking API.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Optional

import anyio
from fastapi import APIRouter, Body, Depends, Header, Query, Response, WebSocket, WebSocketDisconnect

from carhire.common.constants import RequestFilter, TypeMsg, UserRole
from carhire.common.exceptions import BookingError
from carhire.common.logger import log_error, log_info
from carhire.core.matching.location import DriverLocation
from carhire.core.requests.models import BookingRequest, NotificationCounts, Offer
from carhire.core.requests.service import BookingRequestService
from carhire.infra.document_store import StoreError
from carhire.services.booking_api.dependencies import (
    get_booking_service,
    get_user_id,
    resolve_driver_location,
)
from carhire.services.booking_api.schemas import (
    CreatedResponse,
    FeedStatsResponse,
    RequestListResponse,
    ViewsResponse,
)

router = APIRouter(prefix="/requests", tags=["Requests"])
notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])
ws_router = APIRouter(prefix="/ws", tags=["Realtime"])


# =============================================================================
# ЗАЯВКИ
# =============================================================================

@router.post("", response_model=CreatedResponse, status_code=201)
async def create_request(
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: BookingRequestService = Depends(get_booking_service),
) -> CreatedResponse:
    """Создаёт заявку от имени вызывающего клиента."""
    body.pop("user_id", None)
    fields = {**body, "userId": user_id}
    request_id = await service.create_request(fields, idempotency_key=idempotency_key)
    return CreatedResponse(id=request_id)


@router.get("", response_model=RequestListResponse)
async def list_requests(
    filter: RequestFilter = Query(default=RequestFilter.ALL),
    driver_location: DriverLocation = Depends(resolve_driver_location),
    service: BookingRequestService = Depends(get_booking_service),
) -> RequestListResponse:
    """
    Лента активных заявок.
    Для nearby клиент сам решает, перезапрашивать ли all при пустом результате.
    """
    snapshot = await service.snapshot_active(filter, driver_location)
    return RequestListResponse(
        requests=snapshot.requests,
        unfiltered_count=snapshot.unfiltered_count,
        stats=FeedStatsResponse(
            active=snapshot.stats.active,
            urgent=snapshot.stats.urgent,
            starting_today=snapshot.stats.starting_today,
        ),
    )


@router.get("/{request_id}", response_model=BookingRequest)
async def get_request(
    request_id: str,
    service: BookingRequestService = Depends(get_booking_service),
) -> BookingRequest:
    return await service.get_request(request_id)


@router.patch("/{request_id}", response_model=BookingRequest)
async def update_request(
    request_id: str,
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> BookingRequest:
    return await service.update_request(request_id, user_id, body)


@router.delete("/{request_id}", status_code=204)
async def delete_request(
    request_id: str,
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> Response:
    await service.delete_request(request_id, user_id)
    return Response(status_code=204)


@router.post("/{request_id}/fulfil", response_model=BookingRequest)
async def fulfil_request(
    request_id: str,
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> BookingRequest:
    return await service.mark_fulfilled(request_id, user_id)


@router.post("/{request_id}/views", response_model=ViewsResponse)
async def increment_views(
    request_id: str,
    service: BookingRequestService = Depends(get_booking_service),
) -> ViewsResponse:
    return ViewsResponse(views=await service.increment_views(request_id))


# =============================================================================
# ПРЕДЛОЖЕНИЯ
# =============================================================================

@router.post("/{request_id}/offers", response_model=Offer, status_code=201)
async def submit_offer(
    request_id: str,
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> Offer:
    return await service.submit_offer(request_id, user_id, body)


@router.put("/{request_id}/offers/mine", response_model=Offer)
async def edit_offer(
    request_id: str,
    body: dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> Offer:
    return await service.edit_offer(request_id, user_id, body)


@router.delete("/{request_id}/offers/mine", status_code=204)
async def withdraw_offer(
    request_id: str,
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> Response:
    await service.withdraw_offer(request_id, user_id)
    return Response(status_code=204)


# =============================================================================
# СЧЁТЧИКИ
# =============================================================================

@notifications_router.get("", response_model=NotificationCounts)
async def get_notification_counts(
    role: UserRole = Query(...),
    user_id: str = Depends(get_user_id),
    service: BookingRequestService = Depends(get_booking_service),
) -> NotificationCounts:
    return await service.get_notification_counts(user_id, role)


# =============================================================================
# WEBSOCKET
# =============================================================================

async def _stream_to_websocket(
    websocket: WebSocket,
    stream: AsyncIterator[Any],
    render: Callable[[Any], dict[str, Any]],
) -> None:
    """
    Пересылает поток снимков в сокет до отключения клиента.
    Ошибка потока закрывает сокет с кодом 1011.
    Обе половины живут в группе задач anyio: завершение одной отменяет другую.
    """
    try:
        async with anyio.create_task_group() as tg:

            async def forward() -> None:
                try:
                    async for item in stream:
                        await websocket.send_json(render(item))
                except WebSocketDisconnect:
                    pass
                except (BookingError, StoreError) as e:
                    await log_error(f"Поток {websocket.url.path} прерван: {e!r}")
                    await websocket.close(code=1011)
                finally:
                    tg.cancel_scope.cancel()

            async def wait_disconnect() -> None:
                try:
                    while (await websocket.receive())["type"] != "websocket.disconnect":
                        pass
                finally:
                    tg.cancel_scope.cancel()

            tg.start_soon(forward)
            tg.start_soon(wait_disconnect)
    finally:
        with anyio.CancelScope(shield=True):
            await stream.aclose()


@ws_router.websocket("/requests")
async def websocket_requests(
    websocket: WebSocket,
    filter: RequestFilter = Query(default=RequestFilter.ALL),
    driver_location: DriverLocation = Depends(resolve_driver_location),
    service: BookingRequestService = Depends(get_booking_service),
) -> None:
    """
    Живая лента заявок.

    Исходящие сообщения:
    - {"type": "requests", "requests": [...]} — полный снимок на каждое изменение
    """
    await websocket.accept()
    await _stream_to_websocket(
        websocket,
        service.list_active(filter, driver_location),
        lambda snapshot: {"type": "requests", "requests": [r.to_document() for r in snapshot]},
    )
    await log_info("WebSocket ленты заявок отключён", type_msg=TypeMsg.DEBUG)


@ws_router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    user_id: str = Query(...),
    role: UserRole = Query(...),
    service: BookingRequestService = Depends(get_booking_service),
) -> None:
    """
    Живые счётчики уведомлений.

    Исходящие сообщения:
    - {"type": "counts", "driverCount": n, "customerCount": m}
    """
    await websocket.accept()
    await _stream_to_websocket(
        websocket,
        service.watch_notification_counts(user_id, role),
        lambda counts: {"type": "counts", **counts.to_document()},
    )
    await log_info(f"WebSocket счётчиков {user_id} отключён", type_msg=TypeMsg.DEBUG)

"""
Classroom WebSocket

WS /api/v1/classes/{class_id}/ws?token=<jwt>

Server -> client: connected, phase-changed, groups-assigned, action-rejected,
users-online, pong
Client -> server: join-session, request-transition, request-grouping, ping
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from classroom.api.auth import decode_token
from classroom.errors import ClassroomError, ClassNotFound, InvalidTransition
from classroom.services.broadcaster import Broadcaster, Subscriber, get_broadcaster
from classroom.services.grouping_service import GroupingService, get_grouping_service
from classroom.services.phases import Principal
from classroom.services.transition_controller import TransitionController, get_transition_controller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/classes", tags=["realtime"])


def rejection(code: str, reason: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    return {"type": "action-rejected", "code": code, "reason": reason, "details": details or {}}


async def _reject(
    broadcaster: Broadcaster,
    class_id: str,
    subscriber: Subscriber,
    error: ClassroomError,
) -> None:
    await broadcaster.send(class_id, subscriber, rejection(error.code, error.message, error.details))
    if isinstance(error, InvalidTransition):
        # Resync the client on the authoritative phase
        await broadcaster.send(class_id, subscriber, {
            "type": "phase-changed",
            "class_id": class_id,
            "phase": error.current_phase,
            "timestamp": None,
        })


async def handle_message(
    class_id: str,
    subscriber: Subscriber,
    principal: Principal,
    payload: Any,
    broadcaster: Broadcaster,
    controller: TransitionController,
    grouping: GroupingService,
) -> None:
    """Dispatch one client message; domain errors become action-rejected"""
    if not isinstance(payload, dict):
        await broadcaster.send(class_id, subscriber, rejection("INVALID_PAYLOAD", "Message must be a JSON object"))
        return

    message_type = str(payload.get("type") or "").strip().lower()

    if message_type == "ping":
        await broadcaster.send(class_id, subscriber, {"type": "pong"})
        return

    try:
        if message_type == "join-session":
            requested_class = payload.get("class_id", class_id)
            if requested_class != class_id:
                await broadcaster.send(class_id, subscriber, rejection(
                    "CLASS_MISMATCH",
                    "Socket is bound to a different class",
                    {"class_id": class_id, "requested_class_id": requested_class},
                ))
                return
            group_id = payload.get("group_id")
            subscriber.group_id = group_id if isinstance(group_id, int) else None
            await broadcaster.broadcast_presence(class_id)

        elif message_type == "request-transition":
            await controller.apply_transition(
                class_id,
                payload.get("target_phase"),
                principal,
                retention_test_delay_minutes=payload.get("retention_test_delay_minutes"),
            )

        elif message_type == "request-grouping":
            await grouping.run_grouping(
                class_id,
                payload.get("mode"),
                principal,
                requested_group_count=payload.get("group_count"),
            )

        else:
            await broadcaster.send(class_id, subscriber, rejection(
                "UNSUPPORTED_MESSAGE", f"Unsupported message type: {message_type or '(none)'}"
            ))

    except ClassroomError as e:
        await _reject(broadcaster, class_id, subscriber, e)


@router.websocket("/{class_id}/ws")
async def classroom_socket(websocket: WebSocket, class_id: str):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401, reason="Authentication required")
        return

    try:
        principal = decode_token(token)
    except HTTPException:
        await websocket.close(code=4401, reason="Invalid or expired token")
        return

    controller = get_transition_controller()
    broadcaster = get_broadcaster()
    grouping = get_grouping_service()

    try:
        snapshot = await controller.describe_session(class_id, principal)
    except ClassNotFound:
        await websocket.close(code=4404, reason="Class not found")
        return
    except ClassroomError as e:
        await websocket.close(code=4403, reason=e.message)
        return

    await websocket.accept()
    subscriber = Subscriber(websocket, principal.user_id, principal.role.value, snapshot["group_number"])
    await broadcaster.add(class_id, subscriber)
    logger.info(f"{principal.role.value} {principal.user_id} connected to class {class_id}")

    await broadcaster.send(class_id, subscriber, {"type": "connected", "class_id": class_id, "session": snapshot})
    await broadcaster.broadcast_presence(class_id)

    try:
        while True:
            try:
                payload = await websocket.receive_json()
            except ValueError:
                await broadcaster.send(class_id, subscriber, rejection("INVALID_PAYLOAD", "Invalid JSON payload"))
                continue

            await handle_message(class_id, subscriber, principal, payload, broadcaster, controller, grouping)
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.remove(class_id, websocket)
        await broadcaster.broadcast_presence(class_id)
        logger.info(f"{principal.role.value} {principal.user_id} left class {class_id}")

"""WebSocket endpoint for the live capture session.

The server pushes every coordinator event as a JSON ``Event``. The client
sends raw PCM audio bytes (16-bit, 16 kHz, mono) for the active capture and
JSON device notices when its microphone drops out or comes back::

    {"type": "interrupted"}
    {"type": "recovered"}

Commands (start, stop, retry, ...) go through the REST endpoints.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from plainly.core.models import DeviceNotice
from plainly.services.capture.stream import StreamCaptureDevice
from plainly.services.coordinator import SessionCoordinator, get_coordinator
from plainly.services.events import Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


def _active_device(coordinator: SessionCoordinator) -> StreamCaptureDevice | None:
    session = coordinator.session
    if session is None or not session.owns_device:
        return None
    device = session.device
    return device if isinstance(device, StreamCaptureDevice) else None


def _handle_notice(coordinator: SessionCoordinator, raw: str) -> None:
    """Apply a JSON device notice from the client."""
    try:
        message = json.loads(raw)
        notice = DeviceNotice(message.get("type"))
    except (json.JSONDecodeError, AttributeError, ValueError):
        logger.warning("Ignoring malformed client message: %.100s", raw)
        return

    device = _active_device(coordinator)
    if device is None:
        logger.debug("Device notice %s with no active capture", notice.value)
        return
    if notice == DeviceNotice.interrupted:
        device.report_interruption()
    else:
        device.report_recovery()


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.model_dump(mode="json"))


@router.websocket("/ws/session")
async def session_ws(websocket: WebSocket) -> None:
    """Event stream plus audio / device-notice intake for the active capture."""
    coordinator = get_coordinator()
    # Subscribe before accepting so no event published after the handshake is missed
    subscription = coordinator.events.subscribe()
    await websocket.accept()
    forwarder = asyncio.create_task(_forward_events(websocket, subscription))
    logger.info("Session WebSocket connected (%d subscribers)", coordinator.events.subscriber_count)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                device = _active_device(coordinator)
                if device is not None:
                    device.feed(message["bytes"])
            elif message.get("text") is not None:
                _handle_notice(coordinator, message["text"])
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Error on session WebSocket")
    finally:
        coordinator.events.unsubscribe(subscription)
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        logger.info("Session WebSocket disconnected")

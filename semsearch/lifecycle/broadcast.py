from typing import Set

from fastapi import WebSocket

from ..logger import get_logger
from .core import LoadState, ModelLifecycle

logger = get_logger(__name__)

clients: Set[WebSocket] = set()


def state_message(kind: str, lifecycle: ModelLifecycle, state: LoadState) -> dict:
    return {
        "type": "state_update",
        "model": kind,
        "state": {"model": lifecycle.model_id, "updated_at": lifecycle.updated_at, **state.dict()},
    }


async def broadcast(message: dict):
    """
    Broadcast a state update to all connected websocket clients.
    """
    dead_clients = []
    for ws in list(clients):
        try:
            await ws.send_json(message)
        except Exception as e:
            logger.warning("Failed to send to a client: %s", e)
            dead_clients.append(ws)

    # Cleanup broken sockets
    for ws in dead_clients:
        clients.discard(ws)


async def forward_states(kind: str, lifecycle: ModelLifecycle):
    """Relay every transition of ``lifecycle`` to the websocket clients until it closes."""
    async for state in lifecycle.subscribe():
        await broadcast(state_message(kind, lifecycle, state))

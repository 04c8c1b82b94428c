import asyncio
from typing import Dict

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from .broadcast import clients, state_message
from .core import LoadKind, ModelLifecycle

router = APIRouter()


def lifecycles(app) -> Dict[str, ModelLifecycle]:
    return {
        "embedding": app.state.search.lifecycle,
        "generation": app.state.chat.lifecycle,
    }


@router.get("/state")
def state(request: Request):
    return {kind: lc.dict() for kind, lc in lifecycles(request.app).items()}


@router.post("/load/{kind}")
async def load(kind: str, request: Request):
    """
    Schedule the model load in the background and return the current state.
    A second call while loading (or after Ready/Error) changes nothing.
    """
    lcs = lifecycles(request.app)
    if kind not in lcs:
        raise HTTPException(status_code=404, detail=f"Unknown model kind: {kind}")
    lc = lcs[kind]
    if lc.state.kind is LoadKind.IDLE:
        tasks = request.app.state.load_tasks
        task = asyncio.create_task(lc.load())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        await asyncio.sleep(0)  # let the load claim the Loading state
    return lc.dict()


@router.websocket("/ws/state")
async def state_ws(ws: WebSocket):
    await ws.accept()
    clients.add(ws)
    # send initial snapshot
    for kind, lc in lifecycles(ws.app).items():
        await ws.send_json(state_message(kind, lc, lc.state))
    try:
        while True:
            await ws.receive_text()  # keep alive
    except WebSocketDisconnect:
        clients.discard(ws)

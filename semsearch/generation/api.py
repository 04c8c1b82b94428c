from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .core import ChatModel


class GenerateReq(BaseModel):
    prompt: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


router = APIRouter()


@router.post("/generate")
async def generate(req: GenerateReq, request: Request):
    chat: ChatModel = request.app.state.chat
    # raises before the response starts, so guard errors map to a status code
    session = chat.generate(req.prompt, temperature=req.temperature, max_tokens=req.max_tokens)

    async def body():
        async with session:
            async for chunk in session:
                yield chunk

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

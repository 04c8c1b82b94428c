from typing import List, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel

from .core import Document, SemanticSearch


class RankReq(BaseModel):
    query: str
    documents: List[Union[str, Document]]


router = APIRouter()


def get_search(request: Request) -> SemanticSearch:
    return request.app.state.search


@router.post("/rank")
async def rank(req: RankReq, request: Request):
    results = await get_search(request).rank(req.query, req.documents)
    return {"results": [r.model_dump() for r in results]}

import asyncio
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import AUTOLOAD, CORS_ORIGINS, EMBED_MODEL, LLM_MODEL
from .errors import (
    ConcurrentGenerationError,
    DTypeError,
    EncodingError,
    LoadError,
    NotReadyError,
    SemanticSearchError,
)
from .generation import api as generation_api
from .generation.core import ChatModel
from .lifecycle import api as lifecycle_api
from .lifecycle.broadcast import forward_states
from .logger import configure_logging, get_logger
from .models import api as models_api
from .search import api as search_api
from .search.core import SemanticSearch

logger = get_logger(__name__)

STATUS_CODES = {
    EncodingError: 422,
    NotReadyError: 503,
    ConcurrentGenerationError: 409,
    DTypeError: 500,
    LoadError: 500,
}


def create_app(
    search: Optional[SemanticSearch] = None,
    chat: Optional[ChatModel] = None,
    autoload: bool = AUTOLOAD,
) -> FastAPI:
    configure_logging()

    if search is None or chat is None:
        from .models.registry import create_lifecycle

        search = search or SemanticSearch(create_lifecycle(EMBED_MODEL))
        chat = chat or ChatModel(create_lifecycle(LLM_MODEL))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.load_tasks = set()
        forwarders = [
            asyncio.create_task(forward_states(kind, lc))
            for kind, lc in lifecycle_api.lifecycles(app).items()
        ]
        if autoload:
            for lc in lifecycle_api.lifecycles(app).values():
                app.state.load_tasks.add(asyncio.create_task(lc.load()))
        yield

        # Shutdown: stop pending loads, release models, end the forwarders
        for task in list(app.state.load_tasks):
            task.cancel()
        for lc in lifecycle_api.lifecycles(app).values():
            lc.close()
        for task in forwarders + list(app.state.load_tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(lifespan=lifespan)
    app.state.search = search
    app.state.chat = chat
    app.state.load_tasks = set()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SemanticSearchError)
    async def pipeline_error(request: Request, exc: SemanticSearchError):
        status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    app.include_router(models_api.router)
    app.include_router(lifecycle_api.router)
    app.include_router(search_api.router)
    app.include_router(generation_api.router)
    return app

"""
Single-flight text generation on top of a loaded TextGenerator.

``ChatModel.generate()`` hands out at most one ``GenerationSession`` at a
time. A session is a single-pass async iterator over text fragments: each
``__anext__`` pulls the next fragment from the backend in a worker thread,
so nothing is produced ahead of the consumer. The in-flight slot is freed
when the stream ends, fails, is closed, is cancelled, or is garbage
collected without being drained.
"""

import asyncio
import threading
import weakref
from typing import Iterator, Optional

from ..config import GENERATION_MAX_TOKENS, GENERATION_TEMPERATURE
from ..errors import ConcurrentGenerationError, EncodingError
from ..lifecycle.core import ModelLifecycle
from ..logger import get_logger
from ..models.base import TextGenerator

logger = get_logger(__name__)

_END = object()


class GenerationSession:
    def __init__(self, owner: "ChatModel", chunks: Iterator[str], stop: threading.Event):
        self._owner = owner
        self._chunks = chunks
        self._stop = stop
        self._pending = False
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def __aiter__(self) -> "GenerationSession":
        return self

    async def __anext__(self) -> str:
        if self._done:
            raise StopAsyncIteration
        self._pending = True
        try:
            chunk = await asyncio.to_thread(next, self._chunks, _END)
        except BaseException:
            # errors and cancellation both end the session
            self._finish()
            raise
        finally:
            self._pending = False
        if chunk is _END:
            self._finish()
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if self._done:
            return
        self._finish()
        if not self._pending:
            # closing runs the backend's cleanup, which may wait on its worker
            close = getattr(self._chunks, "close", None)
            if callable(close):
                await asyncio.to_thread(close)

    async def __aenter__(self) -> "GenerationSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _finish(self) -> None:
        """Mark the session over, signal the backend and free the slot. Never blocks."""
        if self._done:
            return
        self._done = True
        self._stop.set()
        self._owner._release(self)

    def __del__(self):
        if not getattr(self, "_done", True):
            self._finish()


class ChatModel:
    def __init__(
        self,
        lifecycle: ModelLifecycle[TextGenerator],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.lifecycle = lifecycle
        self.temperature = GENERATION_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or GENERATION_MAX_TOKENS
        self._lock = threading.RLock()
        # weak, so an abandoned session can still be collected and release the slot
        self._active: Optional["weakref.ref[GenerationSession]"] = None

    def _current(self) -> Optional[GenerationSession]:
        session = self._active() if self._active is not None else None
        if session is None or session.done:
            return None
        return session

    @property
    def is_generating(self) -> bool:
        with self._lock:
            return self._current() is not None

    def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationSession:
        """Start streaming a reply to ``prompt``.

        Raises NotReadyError before the model is loaded and
        ConcurrentGenerationError while another session is active.
        """
        generator = self.lifecycle.require()
        if not prompt or not prompt.strip():
            raise EncodingError("Prompt cannot be empty.")

        with self._lock:
            if self._current() is not None:
                raise ConcurrentGenerationError("A generation is already in progress.")
            stop = threading.Event()
            chunks = generator.stream(
                prompt,
                stop,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
            )
            session = GenerationSession(self, iter(chunks), stop)
            self._active = weakref.ref(session)
        logger.debug("Generation started (%d chars of prompt)", len(prompt))
        return session

    def _release(self, session: GenerationSession) -> None:
        with self._lock:
            if self._active is not None and self._active() in (session, None):
                self._active = None
        logger.debug("Generation finished")

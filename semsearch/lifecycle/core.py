import asyncio
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Generic, List, Optional, Set, TypeVar

from ..errors import LoadError, NotReadyError
from ..logger import get_logger
from ..models.base import Downloader

logger = get_logger(__name__)

T = TypeVar("T")


class LoadKind(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DOWNLOADING = "downloading"
    READY = "ready"
    ERROR = "error"


class LoadState:
    """
    One of Idle, Loading, Downloading(fraction), Ready, Error(cause).

    ``==`` compares the payload too; use ``same_kind`` when only the
    discriminant matters (e.g. "is it downloading at all?").
    """

    __slots__ = ("kind", "fraction", "cause")

    def __init__(
        self,
        kind: LoadKind,
        fraction: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ):
        self.kind = kind
        self.fraction = fraction
        self.cause = cause

    @classmethod
    def idle(cls) -> "LoadState":
        return cls(LoadKind.IDLE)

    @classmethod
    def loading(cls) -> "LoadState":
        return cls(LoadKind.LOADING)

    @classmethod
    def downloading(cls, fraction: float) -> "LoadState":
        return cls(LoadKind.DOWNLOADING, fraction=fraction)

    @classmethod
    def ready(cls) -> "LoadState":
        return cls(LoadKind.READY)

    @classmethod
    def error(cls, cause: BaseException) -> "LoadState":
        return cls(LoadKind.ERROR, cause=cause)

    def same_kind(self, other: "LoadState") -> bool:
        return self.kind is other.kind

    @property
    def is_ready(self) -> bool:
        return self.kind is LoadKind.READY

    @property
    def in_progress(self) -> bool:
        return self.kind in (LoadKind.LOADING, LoadKind.DOWNLOADING)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (LoadKind.READY, LoadKind.ERROR)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LoadState):
            return NotImplemented
        return (self.kind, self.fraction, self.cause) == (other.kind, other.fraction, other.cause)

    def __hash__(self) -> int:
        return hash((self.kind, self.fraction, id(self.cause)))

    def __repr__(self) -> str:
        if self.kind is LoadKind.DOWNLOADING:
            return f"LoadState.downloading({self.fraction:.3f})"
        if self.kind is LoadKind.ERROR:
            return f"LoadState.error({self.cause!r})"
        return f"LoadState.{self.kind.value}()"

    def dict(self):
        return {
            "state": self.kind.value,
            "fraction": self.fraction,
            "error": str(self.cause) if self.cause is not None else None,
        }


Listener = Callable[[LoadState], None]

_CLOSED = object()


def _release(resource) -> None:
    for name in ("close", "unload"):
        release = getattr(resource, name, None)
        if callable(release):
            release()
            return


class ModelLifecycle(Generic[T]):
    """
    Drives Idle -> Loading -> Downloading* -> Ready | Error for one model.

    Only one load attempt ever runs per instance: ``load()`` is a no-op
    once the state has left Idle, and Error is terminal (build a new
    instance to retry). Worker threads never write state directly; they
    post to the event loop, which is the single writer.
    """

    def __init__(
        self,
        model_id: str,
        downloader: Downloader,
        factory: Callable[[Path], T],
    ):
        self.model_id = model_id
        self.downloader = downloader
        self.factory = factory
        self._state = LoadState.idle()
        self._resource: Optional[T] = None
        self._closed = False
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._queues: Set[asyncio.Queue] = set()
        self.updated_at = self._now()

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    @property
    def state(self) -> LoadState:
        with self._lock:
            return self._state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> AsyncIterator[LoadState]:
        """Yield every transition from now on, in order, until ``close()``."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.add(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[LoadState]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._queues.discard(queue)

    def _transition(self, new: LoadState) -> None:
        with self._lock:
            self._state = new
            self.updated_at = self._now()
        if new.kind is LoadKind.DOWNLOADING:
            logger.debug("[%s] downloading %.1f%%", self.model_id, (new.fraction or 0.0) * 100)
        elif new.kind is LoadKind.ERROR:
            logger.error("[%s] load failed: %s", self.model_id, new.cause)
        else:
            logger.info("[%s] %s", self.model_id, new.kind.value)
        for listener in list(self._listeners):
            listener(new)
        for queue in list(self._queues):
            queue.put_nowait(new)

    def _on_progress(self, fraction: float) -> None:
        current = self.state
        if not current.in_progress:
            return  # late callback after a terminal state
        fraction = min(max(float(fraction), 0.0), 1.0)
        if current.kind is LoadKind.DOWNLOADING:
            fraction = max(fraction, current.fraction or 0.0)
        self._transition(LoadState.downloading(fraction))

    async def load(self, timeout: Optional[float] = None) -> LoadState:
        """
        Start the single load attempt of this instance and wait for its outcome.

        If a load is already running or finished, return the current state
        without doing anything. ``timeout`` is a caller-imposed deadline; on
        expiry the state becomes Error(TimeoutError). The worker thread
        itself cannot be interrupted and finishes in the background.
        """
        with self._lock:
            if self._state.kind is not LoadKind.IDLE or self._closed:
                return self._state
            # claim the attempt before releasing the lock
            self._state = LoadState.loading()
        self._transition(LoadState.loading())

        try:
            if timeout is None:
                resource = await self._acquire()
            else:
                resource = await asyncio.wait_for(self._acquire(), timeout)
        except asyncio.CancelledError:
            self._transition(LoadState.error(LoadError(self.model_id, asyncio.CancelledError())))
            raise
        except Exception as e:
            if timeout is not None and isinstance(e, asyncio.TimeoutError):
                cause: BaseException = TimeoutError(
                    f"Loading '{self.model_id}' exceeded {timeout}s"
                )
            else:
                cause = LoadError(self.model_id, e)
            self._transition(LoadState.error(cause))
        else:
            with self._lock:
                closed = self._closed
                if not closed:
                    self._resource = resource
            if closed:
                # close() ran while the model was loading; nothing will use it now
                _release(resource)
                self._transition(LoadState.error(
                    LoadError(self.model_id, RuntimeError("lifecycle closed during load"))
                ))
            else:
                self._transition(LoadState.ready())
        return self.state

    async def _acquire(self) -> T:
        loop = asyncio.get_running_loop()

        def progress(fraction: float) -> None:
            loop.call_soon_threadsafe(self._on_progress, fraction)

        path = await asyncio.to_thread(self.downloader.fetch, self.model_id, progress)
        return await asyncio.to_thread(self.factory, path)

    def require(self) -> T:
        """Return the loaded capability, or raise NotReadyError."""
        with self._lock:
            state, resource, closed = self._state, self._resource, self._closed
        if closed or not state.is_ready or resource is None:
            label = "closed" if closed else state.kind.value
            raise NotReadyError(self.model_id, label) from state.cause
        return resource

    def close(self) -> None:
        """Release the capability and end all subscriptions."""
        with self._lock:
            resource, self._resource = self._resource, None
            self._closed = True
        _release(resource)
        for queue in list(self._queues):
            queue.put_nowait(_CLOSED)
        logger.info("[%s] closed", self.model_id)

    def dict(self) -> dict:
        return {"model": self.model_id, "updated_at": self.updated_at, **self.state.dict()}

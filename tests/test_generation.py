import asyncio
import contextlib
import gc
import time

import pytest

from semsearch.errors import ConcurrentGenerationError, EncodingError, NotReadyError
from semsearch.generation.core import ChatModel
from semsearch.lifecycle.core import ModelLifecycle

from conftest import FakeDownloader, FakeGenerator

PROMPT = "What is the meaning of destiny"


async def collect(session):
    return "".join([chunk async for chunk in session])


def test_generate_before_ready(chat):
    with pytest.raises(NotReadyError):
        chat.generate(PROMPT)


@pytest.mark.asyncio
async def test_streams_fragments_lazily(chat, generator):
    await chat.lifecycle.load()

    session = chat.generate(PROMPT)
    first = await session.__anext__()

    assert first == "What "
    assert chat.is_generating
    assert await collect(session) == "is the meaning of destiny "
    assert not chat.is_generating


@pytest.mark.asyncio
async def test_second_generate_while_streaming_fails(chat):
    await chat.lifecycle.load()

    session = chat.generate(PROMPT)
    await session.__anext__()
    with pytest.raises(ConcurrentGenerationError):
        chat.generate("another prompt")

    await collect(session)
    assert await collect(chat.generate("another prompt")) == "another prompt "


@pytest.mark.asyncio
async def test_session_is_single_pass(chat):
    await chat.lifecycle.load()

    session = chat.generate("one two")
    assert await collect(session) == "one two "
    assert await collect(session) == ""


@pytest.mark.asyncio
async def test_error_releases_slot():
    lc = ModelLifecycle("llm", FakeDownloader(), lambda p: FakeGenerator(fail_after=1))
    chat = ChatModel(lc)
    await lc.load()

    session = chat.generate(PROMPT)
    with pytest.raises(RuntimeError, match="device lost"):
        await collect(session)

    assert not chat.is_generating
    chat.generate(PROMPT)


@pytest.mark.asyncio
async def test_aclose_stops_backend_and_releases(chat, generator):
    await chat.lifecycle.load()

    async with chat.generate(PROMPT) as session:
        await session.__anext__()

    assert generator.stopped[-1].is_set()
    assert not chat.is_generating
    assert await collect(chat.generate("next")) == "next "


@pytest.mark.asyncio
async def test_abandoned_session_releases_slot(chat, generator):
    await chat.lifecycle.load()

    session = chat.generate(PROMPT)
    await session.__anext__()
    del session
    gc.collect()

    assert generator.stopped[-1].is_set()
    assert not chat.is_generating
    chat.generate(PROMPT)


@pytest.mark.asyncio
async def test_unstarted_session_abandoned(chat):
    await chat.lifecycle.load()

    chat.generate(PROMPT)  # never consumed
    gc.collect()

    assert not chat.is_generating


@pytest.mark.asyncio
async def test_cancelled_consumer_releases_slot(chat):
    await chat.lifecycle.load()
    session = chat.generate(PROMPT)

    async def consume():
        async with session:
            async for _ in session:
                await asyncio.sleep(1)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.done
    assert not chat.is_generating


class SlowGenerator(FakeGenerator):
    def stream(self, prompt, stop, temperature=0.7, max_tokens=512):
        self.stopped.append(stop)
        yield "first "
        stop.wait(5)
        if not stop.is_set():
            yield "late "


@pytest.mark.asyncio
async def test_cancel_while_waiting_on_backend():
    generator = SlowGenerator()
    lc = ModelLifecycle("llm", FakeDownloader(), lambda p: generator)
    chat = ChatModel(lc)
    await lc.load()
    session = chat.generate(PROMPT)

    async def consume():
        async for _ in session:
            pass

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)  # second fragment is pending in the worker
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.done
    assert generator.stopped[-1].is_set()
    assert not chat.is_generating


@pytest.mark.asyncio
async def test_empty_prompt_rejected(chat):
    await chat.lifecycle.load()
    with pytest.raises(EncodingError):
        chat.generate("   ")
    assert not chat.is_generating


class JoiningGenerator(FakeGenerator):
    """Cleanup waits on a worker thread, like a backend joining its generate call."""

    def stream(self, prompt, stop, temperature=0.7, max_tokens=512):
        self.stopped.append(stop)
        try:
            for word in prompt.split():
                yield word + " "
        finally:
            time.sleep(0.3)


@pytest.mark.asyncio
async def test_aclose_keeps_event_loop_responsive():
    generator = JoiningGenerator()
    lc = ModelLifecycle("llm", FakeDownloader(), lambda p: generator)
    chat = ChatModel(lc)
    await lc.load()
    session = chat.generate(PROMPT)
    await session.__anext__()

    gaps = []

    async def ticker():
        last = time.perf_counter()
        while True:
            await asyncio.sleep(0.01)
            now = time.perf_counter()
            gaps.append(now - last)
            last = now

    tick = asyncio.create_task(ticker())
    await asyncio.sleep(0.03)
    await session.aclose()
    tick.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await tick

    assert max(gaps) < 0.2
    assert generator.stopped[-1].is_set()
    assert not chat.is_generating

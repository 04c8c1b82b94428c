"""
Command line entry point.

Usage:
    python -m semsearch rank --query "Best hikes near Mount Rainier" --doc "..." --doc "..."
    python -m semsearch generate --prompt "What is the meaning of destiny?"
    python -m semsearch serve --port 8000
"""
import argparse
import asyncio
import sys

from tqdm import tqdm

from .config import CACHE_FOLDER, EMBED_MODEL, LLM_MODEL
from .lifecycle.core import LoadKind, LoadState, ModelLifecycle
from .logger import configure_logging

DEMO_QUERY = "Best hikes near Mount Rainier"
DEMO_DOCUMENTS = [
    "The Skyline Trail offers stunning views of glaciers and wildflowers.",
    "Remember to bring sunscreen and water for your hike.",
    "Consider the Paradise area for easy access to scenic trails.",
    "Baking sourdough bread requires a mature starter.",
    "Tips for optimizing SwiftUI app performance.",
]


async def load_with_progress(lifecycle: ModelLifecycle) -> None:
    bar = tqdm(total=100, unit="%", desc=f"Loading {lifecycle.model_id}")

    def on_state(state: LoadState):
        if state.kind is LoadKind.DOWNLOADING:
            bar.update(int((state.fraction or 0.0) * 100) - bar.n)

    lifecycle.add_listener(on_state)
    try:
        state = await lifecycle.load()
    finally:
        lifecycle.remove_listener(on_state)
        bar.close()
    if not state.is_ready:
        raise SystemExit(f"❌ Failed to load {lifecycle.model_id}: {state.cause}")


async def run_rank(args) -> None:
    from .models.registry import create_lifecycle
    from .search.core import SemanticSearch

    lifecycle = create_lifecycle(args.model, cache_dir=args.cache_dir)
    try:
        await load_with_progress(lifecycle)
        search = SemanticSearch(lifecycle, batch_size=args.batch_size)
        results = await search.rank(args.query, args.doc or DEMO_DOCUMENTS)
    finally:
        lifecycle.close()

    print(f"Query: {args.query}")
    for r in results:
        print(f"{r.similarity:6.3f}  {r.text}")


async def run_generate(args) -> None:
    from .generation.core import ChatModel
    from .models.registry import create_lifecycle

    lifecycle = create_lifecycle(args.model, cache_dir=args.cache_dir)
    try:
        await load_with_progress(lifecycle)
        chat = ChatModel(lifecycle, temperature=args.temperature, max_tokens=args.max_tokens)
        async with chat.generate(args.prompt) as session:
            async for chunk in session:
                sys.stdout.write(chunk)
                sys.stdout.flush()
        print()
    finally:
        lifecycle.close()


def main(argv=None):
    parser = argparse.ArgumentParser(prog="semsearch", description="On-device semantic search demo")
    parser.add_argument("--cache_dir", type=str, default=str(CACHE_FOLDER), help="Model snapshot cache")
    parser.add_argument("--log_level", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p_rank = sub.add_parser("rank", help="Rank documents against a query")
    p_rank.add_argument("--query", type=str, default=DEMO_QUERY)
    p_rank.add_argument("--doc", type=str, action="append", help="Candidate document (repeatable)")
    p_rank.add_argument("--model", type=str, default=EMBED_MODEL)
    p_rank.add_argument("--batch_size", type=int, default=None)

    p_gen = sub.add_parser("generate", help="Stream a reply from the LLM")
    p_gen.add_argument("--prompt", type=str, default="What is the meaning of destiny?")
    p_gen.add_argument("--model", type=str, default=LLM_MODEL)
    p_gen.add_argument("--temperature", type=float, default=None)
    p_gen.add_argument("--max_tokens", type=int, default=None)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", type=str, default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("semsearch.app:create_app", factory=True, host=args.host, port=args.port)
    elif args.command == "rank":
        asyncio.run(run_rank(args))
    else:
        asyncio.run(run_generate(args))


if __name__ == "__main__":
    main()

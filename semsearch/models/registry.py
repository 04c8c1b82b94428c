from pathlib import Path
from typing import Dict, List, Optional, Type, TypedDict

from ..config import CACHE_FOLDER, DEVICE
from ..lifecycle.core import ModelLifecycle
from .base import BaseBackend
from .hub import HubDownloader
from .minilm import MiniLML12
from .qwen import Qwen3


class ModelSpec(TypedDict):
    repo: str
    name: str
    description: str
    tags: List[str]
    kind: str
    cls: Type[BaseBackend]


MODELS: Dict[str, ModelSpec] = {
    "sentence-transformers/all-MiniLM-L12-v2": {
        "repo": "sentence-transformers/all-MiniLM-L12-v2",
        "name": "all-MiniLM-L12-v2",
        "description": "Small, fast, general-purpose sentence embeddings (384-d)",
        "tags": ["embedding", "lightweight", "fast"],
        "kind": "embedding",
        "cls": MiniLML12,
    },
    "Qwen/Qwen3-1.7B": {
        "repo": "Qwen/Qwen3-1.7B",
        "name": "Qwen3-1.7B",
        "description": "Compact instruction-tuned chat model",
        "tags": ["llm", "chat"],
        "kind": "generation",
        "cls": Qwen3,
    },
}


def get_model(repo_id: str) -> Type[BaseBackend]:
    if repo_id not in MODELS:
        raise KeyError(f"Unknown model: {repo_id}")
    return MODELS[repo_id]["cls"]


def create_lifecycle(
    repo_id: str,
    cache_dir: Optional[Path] = None,
    device: Optional[str] = None,
) -> ModelLifecycle:
    """Wire the Hub downloader and the registered backend into a fresh lifecycle."""
    backend = get_model(repo_id)(device=device or DEVICE)
    downloader = HubDownloader(cache_dir=cache_dir or CACHE_FOLDER)
    return ModelLifecycle(repo_id, downloader, backend.load)

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


CACHE_FOLDER = Path(os.getenv("SEMSEARCH_CACHE_DIR", ".cache/models"))

EMBED_MODEL = os.getenv("EMBED_MODEL", "sentence-transformers/all-MiniLM-L12-v2")
LLM_MODEL = os.getenv("LLM_MODEL", "Qwen/Qwen3-1.7B")

EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "32"))
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.7"))
GENERATION_MAX_TOKENS = int(os.getenv("GENERATION_MAX_TOKENS", "512"))

# None lets the backend pick (cuda > mps > cpu)
DEVICE: Optional[str] = os.getenv("DEVICE") or None

CORS_ORIGINS: List[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
AUTOLOAD = _flag("AUTOLOAD", "true")

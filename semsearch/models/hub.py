from pathlib import Path
from typing import List, Optional, Sequence

from huggingface_hub import snapshot_download
from tqdm import tqdm

from ..logger import get_logger
from .base import ProgressCallback

logger = get_logger(__name__)

ESSENTIAL_PATTERNS = ["*.json", "*.safetensors", "*.txt", "*.model"]


def progress_tqdm(progress: ProgressCallback):
    """Build a tqdm class that reports ``n / total`` to ``progress`` instead of drawing a bar."""

    class _ProgressTqdm(tqdm):
        def __init__(self, *args, **kwargs):
            kwargs["disable"] = True
            kwargs.pop("name", None)
            super().__init__(*args, **kwargs)

        def __iter__(self):
            for obj in self.iterable:
                yield obj
                self.update(1)

        def update(self, n=1):
            # disabled bars skip their own bookkeeping
            self.n += n
            if self.total:
                progress(min(self.n / self.total, 1.0))

    return _ProgressTqdm


class HubDownloader:
    """Fetch a model snapshot from the Hugging Face Hub into ``cache_dir``."""

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        allow_patterns: Optional[Sequence[str]] = None,
        local_files_only: bool = False,
    ):
        self.cache_dir = cache_dir
        self.allow_patterns: List[str] = list(allow_patterns or ESSENTIAL_PATTERNS)
        self.local_files_only = local_files_only

    def fetch(self, model_id: str, progress: ProgressCallback) -> Path:
        logger.info("Starting snapshot download for model: %s", model_id)
        path = snapshot_download(
            repo_id=model_id,
            cache_dir=str(self.cache_dir) if self.cache_dir else None,
            allow_patterns=self.allow_patterns,
            local_files_only=self.local_files_only,
            tqdm_class=progress_tqdm(progress),
        )
        progress(1.0)
        logger.info("Snapshot download/verification complete. Local path: %s", path)
        return Path(path)

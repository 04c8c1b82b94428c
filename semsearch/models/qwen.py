import threading
from pathlib import Path
from typing import Iterator, List, Optional

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    StoppingCriteria,
    StoppingCriteriaList,
    TextIteratorStreamer,
)

from ..logger import get_logger
from .base import BaseBackend

logger = get_logger(__name__)


class StopOnEvent(StoppingCriteria):
    def __init__(self, event: threading.Event):
        self.event = event

    def __call__(self, input_ids: torch.LongTensor, scores: torch.FloatTensor, **kwargs) -> torch.BoolTensor:
        return torch.full(
            (input_ids.shape[0],), self.event.is_set(), dtype=torch.bool, device=input_ids.device
        )


class CausalLMGenerator:
    """Streams chat replies from a causal LM, one ``model.generate`` at a time."""

    def __init__(self, model, tokenizer, stream_timeout: Optional[float] = 300.0):
        self.model = model
        self.tokenizer = tokenizer
        self.stream_timeout = stream_timeout
        self._generate_lock = threading.Lock()

    def stream(
        self,
        prompt: str,
        stop: threading.Event,
        temperature: float = 0.7,
        max_tokens: int = 512,
    ) -> Iterator[str]:
        messages = [{"role": "user", "content": prompt}]
        text = self.tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        inputs = self.tokenizer(text, return_tensors="pt").to(self.model.device)

        streamer = TextIteratorStreamer(
            self.tokenizer, skip_prompt=True, skip_special_tokens=True, timeout=self.stream_timeout
        )
        kwargs = dict(
            **inputs,
            streamer=streamer,
            max_new_tokens=max_tokens,
            stopping_criteria=StoppingCriteriaList([StopOnEvent(stop)]),
        )
        if temperature > 0:
            kwargs.update(do_sample=True, temperature=temperature)
        else:
            kwargs.update(do_sample=False)

        errors: List[BaseException] = []

        def run():
            # an abandoned previous stream may still be winding down
            with self._generate_lock:
                try:
                    with torch.inference_mode():
                        self.model.generate(**kwargs)
                except Exception as exc:
                    errors.append(exc)
                    streamer.end()

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        try:
            for chunk in streamer:
                if stop.is_set():
                    break
                if chunk:
                    yield chunk
        finally:
            # closed early (possibly from the event loop or GC): signal and leave,
            # the worker holds _generate_lock until model.generate returns
            stop.set()
        worker.join()
        if errors:
            raise errors[0]

    def close(self):
        self.model = None
        self.tokenizer = None


class Qwen3(BaseBackend):
    repo_id: str = "Qwen/Qwen3-1.7B"
    kind: str = "generation"

    def load(self, local_path: Path) -> CausalLMGenerator:
        tokenizer = AutoTokenizer.from_pretrained(str(local_path))
        model = AutoModelForCausalLM.from_pretrained(str(local_path), torch_dtype="auto")
        if self.device:
            model = model.to(self.device)
        elif torch.cuda.is_available():
            model = model.to("cuda")
        model.eval()
        logger.info("Loaded %s on %s", self.repo_id, model.device)
        return CausalLMGenerator(model, tokenizer)

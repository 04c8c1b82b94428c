from .core import ChatModel, GenerationSession

__all__ = ["ChatModel", "GenerationSession"]

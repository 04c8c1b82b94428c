from .core import LoadKind, LoadState, ModelLifecycle

__all__ = ["LoadKind", "LoadState", "ModelLifecycle"]

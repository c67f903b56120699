"""Endless: procedurally generated story pages from a word transition model."""

from .cache import ModelCache
from .model import TransitionModel, generate_sequence, train_model
from .store import InMemoryModelStore, ModelStore, SQLiteModelStore
from .story import GeneratedPage, PageLink, generate_home_page_posts, generate_page, slugify
from .streaming import PageStreamer

__all__ = [
    "ModelCache",
    "TransitionModel",
    "generate_sequence",
    "train_model",
    "InMemoryModelStore",
    "ModelStore",
    "SQLiteModelStore",
    "GeneratedPage",
    "PageLink",
    "generate_home_page_posts",
    "generate_page",
    "slugify",
    "PageStreamer",
]

__version__ = "1.0.0"

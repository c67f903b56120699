"""Text processing for transition model training."""

from .text import is_terminated, iter_sentences, split_sentences
from .quality_checker import CorpusQualityChecker, check_corpus_quality

__all__ = [
    "is_terminated",
    "iter_sentences",
    "split_sentences",
    "CorpusQualityChecker",
    "check_corpus_quality",
]

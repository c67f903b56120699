"""Sentence splitting for raw training text.

Text is tokenized on whitespace only; punctuation stays attached to its word.
A sentence ends at the first token whose last character is a terminator.
"""

from typing import Iterator, List

TERMINATORS = (".", "!", "?")


def is_terminated(token: str) -> bool:
    """Return True if ``token`` closes a sentence."""
    return token.endswith(TERMINATORS)


def iter_sentences(text: str) -> Iterator[List[str]]:
    """Yield sentences of ``text`` as lists of whitespace-delimited tokens.

    Any trailing tokens after the last terminator form one final sentence.
    Empty or whitespace-only text yields nothing.
    """
    sentence: List[str] = []
    for word in text.split():
        sentence.append(word)
        if is_terminated(word):
            yield sentence
            sentence = []
    if sentence:
        yield sentence


def split_sentences(text: str) -> List[List[str]]:
    """Split ``text`` into a list of token lists, one per sentence."""
    return list(iter_sentences(text))

"""Corpus quality checker for transition model training text.

This module validates raw training text before it reaches the model:
- Detects artifacts (HTML tags, URLs, emails, sentinel tokens)
- Checks for malformed text and suspicious repetition
- Flags an unterminated trailing sentence
- Reports quality issues per sentence

A model trained on scraped markup reproduces it on every page. Run by
``train.py --check-quality`` and ``scripts/check_corpus_quality.py``.
"""

import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from endless.data.text import is_terminated, split_sentences
from endless.model.transition import SENTINEL_TOKENS

logger = logging.getLogger(__name__)

_HTML_PATTERN = re.compile(r"<[^>]+>")
_URL_PATTERN = re.compile(r"https?://\S+")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_PUNCT_RUN_PATTERN = re.compile(r"[!?.,;:]{5,}")
_REPEAT_PATTERN = re.compile(r"(.)\1{10,}")


class CorpusQualityChecker:
    """Check training text quality sentence by sentence."""

    def __init__(
        self,
        name: str = "corpus",
        max_sentence_tokens: int = 200,
        strict: bool = False,
    ):
        """Initialize quality checker.

        Args:
            name: Label used in the report (usually the file name)
            max_sentence_tokens: Sentences longer than this are flagged
            strict: If True, fail on ACCEPTABLE quality as well
        """
        self.name = name
        self.max_sentence_tokens = max_sentence_tokens
        self.strict = strict

        self.issues: Dict[str, List[Tuple[int, str]]] = {
            "html_tags": [],
            "urls": [],
            "emails": [],
            "excessive_punctuation": [],
            "malformed_unicode": [],
            "extremely_long": [],
            "suspicious_patterns": [],
            "sentinel_tokens": [],
            "unterminated_tail": [],
        }

        self.stats = {
            "total_sentences": 0,
            "total_words": 0,
            "avg_words": 0.0,
            "vocabulary_size": 0,
        }

    def check_text(self, text: str, show_progress: bool = False) -> Dict:
        """Run all quality checks on ``text`` and return a report.

        Args:
            text: Raw training text
            show_progress: Show a tqdm progress bar over sentences

        Returns:
            Dictionary with quality report and pass/fail status
        """
        sentences = split_sentences(text)
        vocabulary: Counter = Counter()

        iterator = tqdm(sentences, desc="Quality Check", disable=not show_progress)
        for idx, sentence in enumerate(iterator):
            joined = " ".join(sentence)

            self.stats["total_sentences"] += 1
            self.stats["total_words"] += len(sentence)
            vocabulary.update(sentence)

            self._check_markup(idx, joined)
            self._check_punctuation(idx, joined)
            self._check_unicode(idx, joined)
            self._check_length(idx, sentence, joined)
            self._check_patterns(idx, joined)
            self._check_sentinels(idx, sentence, joined)

        if sentences and not is_terminated(sentences[-1][-1]):
            self.issues["unterminated_tail"].append((len(sentences) - 1, " ".join(sentences[-1])[:100]))

        if self.stats["total_sentences"] > 0:
            self.stats["avg_words"] = self.stats["total_words"] / self.stats["total_sentences"]
        self.stats["vocabulary_size"] = len(vocabulary)

        return self._generate_report()

    def _check_markup(self, idx: int, text: str):
        if _HTML_PATTERN.search(text):
            self.issues["html_tags"].append((idx, text[:100]))
        if _URL_PATTERN.search(text):
            self.issues["urls"].append((idx, text[:100]))
        if _EMAIL_PATTERN.search(text):
            self.issues["emails"].append((idx, text[:100]))

    def _check_punctuation(self, idx: int, text: str):
        if _PUNCT_RUN_PATTERN.search(text):
            self.issues["excessive_punctuation"].append((idx, text[:100]))
            return
        punct_count = sum(1 for c in text if c in "!?.,;:")
        if text and punct_count / len(text) > 0.2:
            self.issues["excessive_punctuation"].append((idx, text[:100]))

    def _check_unicode(self, idx: int, text: str):
        if "�" in text or _CONTROL_PATTERN.search(text):
            self.issues["malformed_unicode"].append((idx, text[:100]))

    def _check_length(self, idx: int, sentence: List[str], text: str):
        if len(sentence) > self.max_sentence_tokens:
            self.issues["extremely_long"].append((idx, text[:100]))

    def _check_patterns(self, idx: int, text: str):
        if _REPEAT_PATTERN.search(text):
            self.issues["suspicious_patterns"].append((idx, text[:100]))

    def _check_sentinels(self, idx: int, sentence: List[str], text: str):
        if any(word in SENTINEL_TOKENS for word in sentence):
            self.issues["sentinel_tokens"].append((idx, text[:100]))

    def _generate_report(self) -> Dict:
        """Generate quality report.

        Returns:
            Dictionary with quality metrics and pass/fail status
        """
        total = self.stats["total_sentences"]
        total_issues = sum(len(issues) for issues in self.issues.values())
        issue_percentage = (total_issues / total * 100) if total > 0 else 0.0

        if total == 0:
            quality_level = "EMPTY"
            passed = False
        elif issue_percentage == 0:
            quality_level = "EXCELLENT"
            passed = True
        elif issue_percentage < 1:
            quality_level = "GOOD"
            passed = True
        elif issue_percentage < 5:
            quality_level = "ACCEPTABLE"
            passed = not self.strict
        elif issue_percentage < 10:
            quality_level = "POOR"
            passed = False
        else:
            quality_level = "CRITICAL"
            passed = False

        return {
            "corpus": self.name,
            "quality_level": quality_level,
            "passed": passed,
            "stats": dict(self.stats),
            "issues": {
                key: {
                    "count": len(value),
                    "percentage": (len(value) / total * 100) if total > 0 else 0.0,
                    "samples": value[:3],
                }
                for key, value in self.issues.items() if value
            },
            "total_issues": total_issues,
            "issue_percentage": issue_percentage,
        }

    def print_report(self, report: Dict):
        """Log a formatted quality report.

        Args:
            report: Report dictionary from check_text()
        """
        logger.info("=" * 70)
        logger.info("CORPUS QUALITY REPORT")
        logger.info("=" * 70)
        logger.info(f"Corpus: {report['corpus']}")
        logger.info(f"Quality Level: {report['quality_level']}")
        logger.info(f"Status: {'PASSED' if report['passed'] else 'FAILED'}")
        logger.info(f"  Sentences: {report['stats']['total_sentences']:,}")
        logger.info(f"  Avg Words: {report['stats']['avg_words']:.1f}")
        logger.info(f"  Vocabulary Size: {report['stats']['vocabulary_size']:,}")

        if report["issues"]:
            logger.warning(
                f"Found {report['total_issues']} issues ({report['issue_percentage']:.2f}% of sentences)"
            )
            for issue_type, details in report["issues"].items():
                logger.warning(f"  {issue_type.replace('_', ' ').title()}: {details['count']}")
                if details["samples"]:
                    logger.warning(f"    Example: {details['samples'][0][1][:80]}")
        else:
            logger.info("No quality issues found")

        logger.info("=" * 70)


def check_corpus_quality(
    text: str,
    name: str = "corpus",
    strict: bool = False,
    max_sentence_tokens: Optional[int] = None,
) -> bool:
    """Check ``text`` and log the report.

    Returns:
        True if quality is acceptable, False otherwise
    """
    kwargs = {} if max_sentence_tokens is None else {"max_sentence_tokens": max_sentence_tokens}
    checker = CorpusQualityChecker(name=name, strict=strict, **kwargs)
    report = checker.check_text(text)
    checker.print_report(report)
    return report["passed"]

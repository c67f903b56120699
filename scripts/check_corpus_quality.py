#!/usr/bin/env python3
"""Standalone script to check training corpus quality.

Usage:
    python scripts/check_corpus_quality.py stories.txt
    python scripts/check_corpus_quality.py corpus/*.txt --strict
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endless.data.quality_checker import CorpusQualityChecker
import argparse
import json
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s:%(name)s:%(message)s'
)


def main():
    parser = argparse.ArgumentParser(description="Check corpus quality before training")
    parser.add_argument("files", nargs="+", help="Text files to check")
    parser.add_argument("--strict", action="store_true", help="Fail on ACCEPTABLE quality too")
    parser.add_argument("--max-sentence-tokens", type=int, default=200, help="Flag longer sentences")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")

    args = parser.parse_args()

    all_passed = True
    for path in args.files:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()

        checker = CorpusQualityChecker(
            name=os.path.basename(path),
            max_sentence_tokens=args.max_sentence_tokens,
            strict=args.strict,
        )
        report = checker.check_text(text, show_progress=True)
        if args.json:
            print(json.dumps(report, indent=2, ensure_ascii=False))
        else:
            checker.print_report(report)
        all_passed = all_passed and report["passed"]

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()

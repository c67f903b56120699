#!/usr/bin/env python
"""Train an Endless transition model from text files and store it.

Usage:
    python train.py --input stories.txt more.txt
    python train.py --input extra.txt --model-id 3       # retrain model 3
    python train.py --input corpus/*.txt --check-quality --strict
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from tqdm import tqdm

from endless.cache import ModelCache
from endless.config import load_config
from endless.data.quality_checker import check_corpus_quality
from endless.errors import EndlessError
from endless.service import retrain_model, train_new_model
from endless.store import SQLiteModelStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def read_corpus(paths: List[Path]) -> str:
    """Read and concatenate UTF-8 text files."""
    parts = []
    for path in tqdm(paths, desc="Reading corpus", unit="file"):
        parts.append(path.read_text(encoding="utf-8"))
    return "\n".join(parts)


def main():
    parser = argparse.ArgumentParser(description='Train an Endless transition model')
    parser.add_argument('--input', type=Path, nargs='+', required=True, help='Text files to train on')
    parser.add_argument('--config', type=str, default=None, help='Path to config file')
    parser.add_argument('--db', type=str, default=None, help='SQLite model store (overrides config)')
    parser.add_argument('--model-id', type=int, default=None, help='Retrain this stored model instead of creating one')
    parser.add_argument('--check-quality', action='store_true', help='Run corpus quality checks first')
    parser.add_argument('--strict', action='store_true', help='Fail on ACCEPTABLE corpus quality too')

    args = parser.parse_args()

    config = load_config(args.config)
    db_path = args.db or config['store']['db_path']

    try:
        text = read_corpus(args.input)
        logger.info(f"Read {len(text):,} characters from {len(args.input)} file(s)")

        if args.check_quality:
            name = ", ".join(p.name for p in args.input)
            if not check_corpus_quality(
                text,
                name=name,
                strict=args.strict,
                max_sentence_tokens=config['generation']['max_sentence_tokens'],
            ):
                logger.error("Corpus quality check failed; fix the text or drop --check-quality")
                sys.exit(1)

        store = SQLiteModelStore(db_path)
        cache = ModelCache(store)

        if args.model_id is None:
            result = train_new_model(store, cache, text)
        else:
            result = retrain_model(store, cache, args.model_id, text)

        logger.info("=" * 60)
        logger.info(f"Model {result.record.id} stored in {db_path}")
        logger.info(f"  Sentences added: {result.stats.sentences:,}")
        logger.info(f"  Vocabulary size: {result.vocabulary_size:,}")
        logger.info(f"  Transitions: {result.num_transitions:,}")
        logger.info("=" * 60)

    except EndlessError as e:
        logger.error(f"Training failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

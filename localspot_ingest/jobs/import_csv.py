"""CLI job to import a single CSV file of businesses."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from localspot_ingest.core.config import ConfigError, get_settings
from localspot_ingest.etl.csv_importer import CsvImportError, import_csv_file
from localspot_ingest.jobs.csv_watcher import ERROR_DIRNAME, PROCESSED_DIRNAME, relocate_file
from localspot_ingest.models import ImportOutcome

logger = logging.getLogger(__name__)


def run_import_job(path: Path, *, move: bool = False) -> ImportOutcome:
    """Import ``path``; with ``move`` the file is filed under processed/ or error/ next to it."""
    if not path.is_file():
        raise FileNotFoundError(f"CSV file not found: {path}")
    if path.suffix.lower() != ".csv":
        raise ValueError(f"Expected a .csv file, got {path.name}")

    settings = get_settings()
    logger.info("Importing %s", path)
    try:
        outcome = import_csv_file(path, settings=settings)
    except CsvImportError:
        if move:
            target = relocate_file(path, path.parent / ERROR_DIRNAME, "error")
            logger.info("Moved file with errors to %s", target)
        raise

    if move:
        target = relocate_file(path, path.parent / PROCESSED_DIRNAME, "processed")
        logger.info("Moved processed file to %s", target)
    return outcome


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import businesses from a CSV file")
    parser.add_argument("path", type=Path, help="CSV file to import")
    parser.add_argument(
        "--move",
        action="store_true",
        help="Move the file into processed/ or error/ afterwards, like the watcher does",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        outcome = run_import_job(args.path, move=args.move)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except (CsvImportError, FileNotFoundError, ValueError) as exc:
        logger.error("Import failed: %s", exc)
        return 1

    print(f"{outcome.path}: {outcome.summary()}")
    for error in outcome.errors:
        print(f"  {error}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

# main.py

"""Command-line interface for the PII detection pipeline.

Reads a UTF-8 text file, runs detection and prints the result as JSON:

    python main.py letter.txt --language de --document-id 42
"""

import sys
import json
import logging
import argparse
from pathlib import Path

from pii_detection.logging_config import configure_logging
from pii_detection.service.config import settings
from pii_detection.service.pipeline import detect_pii

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect PII in an EN/FR/DE text document.")
    parser.add_argument("file", type=Path, help="UTF-8 text file to scan")
    parser.add_argument("--language", choices=["en", "fr", "de"], help="Skip language detection")
    parser.add_argument("--document-id", help="Identifier echoed in the result metadata")
    parser.add_argument("--no-ner", action="store_true", help="Run regex detection only")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    return parser


def main(argv=None) -> int:
    """Run the CLI.

    Returns:
        Process exit code: 0 on success, 1 if the result carries an error,
        2 if the file cannot be read
    """
    args = build_parser().parse_args(argv)

    # Logs go to stderr so stdout stays valid JSON
    configure_logging(args.log_level, stream=sys.stderr)

    try:
        text = args.file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Cannot read input file: {e}", extra={"path": str(args.file)})
        return 2

    result = detect_pii(
        text,
        document_id=args.document_id or args.file.name,
        language=args.language,
        enable_ner=False if args.no_ner else None,
    )

    json.dump(result.to_dict(), sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")

    return 1 if "error" in result.metadata else 0


if __name__ == "__main__":
    sys.exit(main())

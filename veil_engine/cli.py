#!/usr/bin/env python3
"""
veil command-line interface.

Examples:
  veil detect letter.txt --language fr
  veil detect invoice.txt --json
  veil anonymize letter.txt --output letter.anon.txt --mapping letter.mapping.json
  veil validate-config my_recognizers.yaml
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from veil_engine.anonymizers.session import anonymize_document
from veil_engine.detection_config import SUPPORTED_LANGUAGES, VERSION
from veil_engine.detectors.config_loader import read_recognizer_file, validate_recognizer_config
from veil_engine.detectors.pipeline import DetectionOptions, DetectionPipeline

logger = logging.getLogger(__name__)


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _print_entities(result) -> None:
    print(f"Language: {result.language}  Document type: {result.document_type}")
    print(f"{len(result.entities)} entities ({len(result.flagged)} flagged for review)")
    for entity in result.entities:
        flag = " ?" if entity.metadata.get("flagged_for_review") else ""
        print(
            f"  {entity.start:>6}-{entity.end:<6} {entity.entity_type:<22} "
            f"{entity.confidence:.2f} {entity.source:<5} {entity.text!r}{flag}"
        )


async def _detect(args) -> int:
    text = _read_text(args.file)
    pipeline = DetectionPipeline()
    result = await pipeline.detect(text, DetectionOptions(language=args.language, document_id=args.file))
    if result.error is not None:
        print(f"Error: {result.error.message}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2, default=str))
    else:
        _print_entities(result)
    return 0


async def _anonymize(args) -> int:
    text = _read_text(args.file)
    options = DetectionOptions(language=args.language, document_id=Path(args.file).name)
    result = await anonymize_document(text, options=options)
    detection = result.detection
    if detection is not None and detection.error is not None:
        print(f"Error: {detection.error.message}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(result.text, encoding="utf-8")
    else:
        sys.stdout.write(result.text)
    if args.mapping:
        Path(args.mapping).write_text(result.mapping.to_json(), encoding="utf-8")
        logger.info(f"Mapping written to {args.mapping}")
    return 0


def _validate_config(args) -> int:
    try:
        data = read_recognizer_file(args.file)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        print(f"Error: could not read {args.file}: {e}", file=sys.stderr)
        return 1
    report = validate_recognizer_config(data)
    if report["valid"]:
        print(f"OK: {report['recognizer_count']} recognizers")
        return 0
    print(f"Invalid: {len(report['errors'])} errors", file=sys.stderr)
    for error in report["errors"]:
        print(f"  - {error}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="veil",
        description="Detect and anonymize PII in Swiss/EU documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="List detected entities")
    detect.add_argument("file", help="UTF-8 text file")
    detect.add_argument("--language", choices=sorted(SUPPORTED_LANGUAGES), help="Skip language detection")
    detect.add_argument("--json", action="store_true", help="Print the full result as JSON")

    anonymize = sub.add_parser("anonymize", help="Replace PII with placeholders")
    anonymize.add_argument("file", help="UTF-8 text file")
    anonymize.add_argument("--language", choices=sorted(SUPPORTED_LANGUAGES), help="Skip language detection")
    anonymize.add_argument("--mapping", metavar="OUT.json", help="Write the mapping record here")
    anonymize.add_argument("--output", metavar="OUT.txt", help="Write anonymized text here (default: stdout)")

    validate = sub.add_parser("validate-config", help="Check a recognizer pack")
    validate.add_argument("file", help="YAML or JSON recognizer pack")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
    )

    if args.command == "validate-config":
        return _validate_config(args)
    if not Path(args.file).exists():
        print(f"Error: Input file not found: {args.file}", file=sys.stderr)
        return 1
    if args.command == "detect":
        return asyncio.run(_detect(args))
    return asyncio.run(_anonymize(args))


if __name__ == "__main__":
    sys.exit(main())

"""Command-line interface for extracting receipts from OCR text files.

Provides subcommands for full receipt extraction to JSON and for
inspecting the per-line labels the classifier assigns.
"""

import argparse
import json
import sys
from pathlib import Path

from receipt_classifier.classification.engine import EngineState
from receipt_classifier.pipeline import ReceiptPipeline, build_pipeline
from receipt_classifier.utils.config import AppConfig, load_config
from receipt_classifier.utils.exceptions import ReceiptClassifierError
from receipt_classifier.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _ready_pipeline(config: AppConfig) -> ReceiptPipeline:
    """Build the pipeline and block until its model has loaded.

    Args:
        config: Application configuration.

    Returns:
        A pipeline whose engine is ready.

    Raises:
        ReceiptClassifierError: If the model failed or did not load in time.
    """
    pipeline = build_pipeline(config)
    state = pipeline.wait_until_ready(config.pipeline.ready_timeout_s)
    if state is not EngineState.READY:
        pipeline.engine.ensure_ready()
    return pipeline


def extract_file(file_path: Path, config: AppConfig) -> dict[str, object]:
    """Extract a receipt from a file of OCR text.

    Args:
        file_path: Text file produced by OCR.
        config: Application configuration.

    Returns:
        The receipt as JSON-compatible data.
    """
    pipeline = _ready_pipeline(config)
    text = file_path.read_text(encoding="utf-8")
    return pipeline.process(text).to_dict()


def classify_file(file_path: Path, config: AppConfig) -> list[tuple[str, str]]:
    """Label every non-blank line of an OCR text file.

    Returns:
        ``(label, line)`` pairs in document order.
    """
    pipeline = _ready_pipeline(config)
    text = file_path.read_text(encoding="utf-8")
    return [(cl.label.value, cl.text) for cl in pipeline.classify(text)]


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    config_help = "YAML config file (default: configs/config.yaml)"
    parser = argparse.ArgumentParser(
        prog="receipt-classifier",
        description="Receipt field extraction from OCR text",
    )
    parser.add_argument("-c", "--config", type=Path, default=None, help=config_help)

    # Subcommands accept -c too; SUPPRESS keeps a top-level value unless repeated.
    config_parent = argparse.ArgumentParser(add_help=False)
    config_parent.add_argument(
        "-c", "--config", type=Path, default=argparse.SUPPRESS, help=config_help
    )
    subparsers = parser.add_subparsers(dest="command")

    extract_parser = subparsers.add_parser(
        "extract", parents=[config_parent], help="Extract a receipt as JSON"
    )
    extract_parser.add_argument("file", type=Path, help="OCR text file to process")
    extract_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    classify_parser = subparsers.add_parser(
        "classify",
        parents=[config_parent],
        help="Print the label assigned to each line",
    )
    classify_parser.add_argument("file", type=Path, help="OCR text file to process")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    # stdout carries the command's output
    setup_logging(config.log_level, stream=sys.stderr)

    if not args.file.exists():
        print(f"Error: {args.file} does not exist", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "extract":
            result = extract_file(args.file, config)
            output_str = json.dumps(result, indent=2)
            if args.output:
                args.output.parent.mkdir(parents=True, exist_ok=True)
                args.output.write_text(output_str)
                print(f"Output written to {args.output}")
            else:
                print(output_str)
        else:
            for label, line in classify_file(args.file, config):
                print(f"{label}\t{line}")
    except ReceiptClassifierError as exc:
        logger.error("Failed to process %s: %s", args.file, exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
pst2pdf - Command line entry point
Converts Outlook .pst archives into PDFs of email conversations, either one
archive at a time or every archive in an input folder
"""

import argparse
import os
import sys
from typing import List, Optional

from pst2pdf_engine import PstConversionOrchestrator

DEFAULT_INPUT_DIR = "pst_input"
DEFAULT_OUTPUT_DIR = "pdf_output"


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a whole number, got {value!r}")
    if parsed < 0:
        raise argparse.ArgumentTypeError("must be 0 or greater")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number of seconds, got {value!r}")
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pst2pdf",
        description=(
            "Convert a .pst Outlook archive to a single PDF of email conversations. "
            "Without an input archive, every .pst in the input folder is converted."
        ),
        epilog="Requirements: the 'readpst' binary (libpst) must be bundled, passed with -R, or on PATH.",
    )
    parser.add_argument("input", nargs="?", help="Archive to convert (omit for batch mode).")
    parser.add_argument("-o", "--output", help="Output PDF path (default: <input>.pdf).")
    parser.add_argument(
        "-i",
        "--input-dir",
        default=DEFAULT_INPUT_DIR,
        help=f"Batch mode: folder scanned for .pst files (default: {DEFAULT_INPUT_DIR}).",
    )
    parser.add_argument(
        "-O",
        "--output-dir",
        default=DEFAULT_OUTPUT_DIR,
        help=f"Batch mode: folder receiving the PDFs (default: {DEFAULT_OUTPUT_DIR}).",
    )
    parser.add_argument("-R", "--readpst-bin", help="Path to the readpst executable.")
    parser.add_argument("-w", "--workdir", help="Working directory for extracted files (default: temp).")
    parser.add_argument("--keep-workdir", action="store_true", help="Do not delete the working directory.")
    parser.add_argument(
        "--max-emails",
        type=_non_negative_int,
        default=0,
        help="Limit processed emails per archive, for quick tests (default: 0 = all).",
    )
    parser.add_argument(
        "--readpst-timeout",
        type=_positive_float,
        default=None,
        help="Kill readpst after this many seconds (default: no limit).",
    )
    parser.add_argument("--log-dir", help="Write run logs here (batch default: <output-dir>/logs).")
    parser.add_argument("--no-logs", action="store_true", help="Do not write run log files.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    orchestrator = PstConversionOrchestrator(
        readpst_bin=args.readpst_bin,
        workdir=args.workdir,
        keep_workdir=args.keep_workdir,
        max_emails=args.max_emails,
        readpst_timeout_seconds=args.readpst_timeout,
        logs_dir=args.log_dir,
        enable_detailed_logging=not args.no_logs,
    )

    if args.input is None:
        try:
            manifest = orchestrator.convert_batch(args.input_dir, args.output_dir)
        except Exception as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        summary = manifest["summary"]
        if manifest["archives_found"]:
            print(
                f"\nConverted {summary['archives_converted']} of {manifest['archives_found']} archive(s)"
                f" into {args.output_dir}"
            )
        return 1 if manifest["errors"] else 0

    if not os.path.isfile(args.input):
        print("Input .pst not found.", file=sys.stderr)
        return 1

    try:
        result = orchestrator.convert_archive(args.input, args.output)
    except Exception as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"Wrote {result['output_file']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

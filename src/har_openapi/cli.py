"""
Command-line interface for HAR analysis and sanitisation.
"""

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from .config import apply_log_level, load_config
from .emitter import dump_document, to_yaml
from .errors import ConfigurationError, MalformedCaptureError
from .pipeline import analyze_files, sanitise_file
from .utils import get_default_output_filename
from .validator import load_document, validate_document


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Arguments to parse; defaults to ``sys.argv[1:]``

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(description='Infer OpenAPI documents from HAR captures and sanitise HAR files')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging (DEBUG level)')
    parser.add_argument('--config', help='Path to JSON or YAML configuration file')
    parser.add_argument('--progress', action='store_true', help='Show progress bars')
    subparsers = parser.add_subparsers(dest='command', required=True)

    analyze = subparsers.add_parser('analyze', help='Generate an OpenAPI document from HAR files')
    analyze.add_argument('input_files', nargs='+', help='Input HAR file paths')
    analyze.add_argument('--output', '-o', help='Output document path (.yaml/.yml or .json); prints YAML when omitted')
    analyze.add_argument('--title', help='API title')
    analyze.add_argument('--api-version', help='API version')
    analyze.add_argument('--no-sanitise', action='store_true', help='Do not sanitise exchanges before inference')

    sanitise = subparsers.add_parser('sanitise', aliases=['sanitize'], help='Write a sanitised copy of a HAR file')
    sanitise.add_argument('input_file', help='Input HAR file path')
    sanitise.add_argument('output_file', nargs='?', help='Output HAR file path (optional, defaults to input_file_sanitised.har)')

    validate = subparsers.add_parser('validate', help='Check an OpenAPI document for structural errors')
    validate.add_argument('document', help='OpenAPI document path (.yaml/.yml or .json)')

    return parser.parse_args(argv)


def run_analyze(args: argparse.Namespace, config: dict, logger: logging.Logger) -> int:
    if args.title:
        config['title'] = args.title
    if args.api_version:
        config['api_version'] = args.api_version

    document, report, sanitiser = analyze_files(
        args.input_files, config, sanitise=not args.no_sanitise, show_progress=args.progress
    )

    if args.output:
        dump_document(document, args.output)
        print(f"Wrote OpenAPI document with {len(document['paths'])} paths to {args.output}")
    else:
        sys.stdout.write(to_yaml(document))

    report.log_summary(sensitive_data_found=sanitiser.metrics["sensitive_data_found"] if sanitiser else None)
    return 0


def run_sanitise(args: argparse.Namespace, config: dict, logger: logging.Logger) -> int:
    # If output_file is not specified, create a default one based on the input file name
    if not args.output_file:
        args.output_file = get_default_output_filename(args.input_file)
        print(f"No output file specified, using default: {args.output_file}")

    logger.info("Sanitising HAR file...")
    duration, report, sanitiser = sanitise_file(args.input_file, args.output_file, config,
                                                show_progress=args.progress)

    found = sanitiser.metrics["sensitive_data_found"]
    report.log_summary(duration, found)

    print(f"Successfully sanitised HAR file from {args.input_file} to {args.output_file}")
    print(f"Time taken: {duration:.2f} seconds")
    print(f"Total entries processed: {report.metrics['total_entries']}")
    print(f"Entries skipped: {report.metrics['skipped_entries']}")

    total_sensitive = sum(found.values())
    print(f"Sensitive data found: {total_sensitive} instances")
    if total_sensitive > 0:
        print("  Breakdown by type:")
        for data_type, count in found.items():
            if count > 0:
                print(f"    - {data_type}: {count}")
    return 0


def run_validate(args: argparse.Namespace) -> int:
    try:
        document = load_document(args.document)
    except (ValueError, yaml.YAMLError) as e:
        print(f"ERROR: {args.document} is not valid YAML or JSON: {e}")
        return 1
    errors = validate_document(document)
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        print(f"{args.document}: {len(errors)} structural errors")
        return 1
    print(f"{args.document}: OK")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the command-line interface.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    try:
        if args.command == 'validate':
            return run_validate(args)

        config = load_config(args.config)
        apply_log_level(config, logging.getLogger('har_openapi'))

        if args.command == 'analyze':
            return run_analyze(args, config, logger)
        return run_sanitise(args, config, logger)
    except MalformedCaptureError as e:
        logger.error(f"Malformed capture: {str(e)}")
        print(f"Error processing HAR file: {str(e)}")
        return 1
    except ConfigurationError as e:
        logger.error(str(e))
        print(f"Configuration error: {str(e)}")
        return 1
    except OSError as e:
        logger.error(f"I/O error: {str(e)}", exc_info=args.verbose)
        print(f"Error: {str(e)}")
        return 1


if __name__ == '__main__':
    sys.exit(main())

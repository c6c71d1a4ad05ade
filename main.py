#!/usr/bin/env python3
"""
Blocklift - Block to Model Converter

Main entry point for Blocklift. Analyzes where an embeddable block type is
used and converts it into a standalone model, rewriting every field that
embedded it.
"""

import logging
import sys
import argparse
from pathlib import Path
from typing import Optional

from blocklift.config import ConversionOptions, ReplacementPolicy, get_config
from blocklift.database import DatabaseManager
from blocklift.engine import BlockConverter, list_block_types
from blocklift.models import BlockAnalysis, ConversionProgress
from blocklift.repository import HttpRepository


def setup_logging():
    """Configure logging for the application."""
    config = get_config()
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def create_repository() -> HttpRepository:
    """Build the HTTP repository from the configuration."""
    config = get_config()
    token = config.api_token
    if not token:
        raise ValueError(f"No API token: set the {config.get('api.token_env', 'DATOCMS_API_TOKEN')} environment variable")
    return HttpRepository(
        api_token=token,
        base_url=config.api_base_url,
        timeout=config.api_timeout,
        page_size=config.page_size,
    )


def print_progress(progress: ConversionProgress):
    """Print one progress line."""
    line = f"[{progress.percentage:5.1f}%] {progress.description}"
    if progress.details:
        line += f" ({progress.details})"
    print(line)


def print_analysis(analysis: BlockAnalysis):
    """Print the result of a block analysis."""
    block = analysis.source_type
    print("\n" + "=" * 60)
    print(f"Block: {block.name} ({block.api_key}, id {block.id})")
    print("=" * 60)

    print(f"\nFields ({len(analysis.fields)}):")
    for field in analysis.fields:
        localized = " [localized]" if field.localized else ""
        print(f"  - {field.api_key}: {field.field_type}{localized}")

    print(f"\nReferencing fields ({len(analysis.referencing_fields)}):")
    for usage in analysis.referencing_fields:
        print(f"  - {usage.qualified_name} ({usage.kind.value})")

    print(f"\nPaths ({len(analysis.nested_paths)}):")
    for path in analysis.nested_paths:
        localized = " [localized]" if path.is_in_localized_context else ""
        print(f"  - {path.describe()}{localized}")

    print(f"\nAffected records: {analysis.total_affected_records}")


def run_analyze(block: str):
    """Analyze a block type without changing anything."""
    with create_repository() as repository:
        analysis = BlockConverter(repository).analyze(block)
        print_analysis(analysis)


def run_list_blocks():
    """List every embeddable block type."""
    with create_repository() as repository:
        blocks = list_block_types(repository)
        print(f"\n{len(blocks)} block types:")
        for block in blocks:
            print(f"  - {block['api_key']}: {block['name']} (id {block['id']})")


def run_convert(block: str, options: ConversionOptions, use_state: bool) -> bool:
    """
    Convert a block type into a model.

    Args:
        block: Block type id or api_key
        options: Conversion options
        use_state: Persist mappings and failures in the state database

    Returns:
        True if the conversion succeeded
    """
    config = get_config()
    state: Optional[DatabaseManager] = None
    if use_state:
        state = DatabaseManager(config.state_filename)
        state.connect()
        state.initialize_database()
        logging.info(f"Conversion state stored in {config.state_filename}")

    try:
        with create_repository() as repository:
            result = BlockConverter(repository, options, state).convert(block, on_progress=print_progress)
    finally:
        if state is not None:
            state.disconnect()

    print("\n" + "=" * 60)
    if not result.success:
        print(f"Conversion failed: {result.error}")
        print("=" * 60)
        return False

    print(f"Converted {result.original_block_api_key} into {result.destination_type_key}")
    print("=" * 60)
    print(f"- Records created: {result.migrated_record_count}")
    print(f"- Fields converted: {result.converted_field_count}")
    print(f"- New model id: {result.destination_type_id}")
    print(f"\nCheck {config.log_filename} for detailed processing logs")
    return True


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Blocklift - Convert embedded blocks into standalone models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py list-blocks                          # List block types
  python main.py analyze call_to_action               # Show where a block is used
  python main.py convert call_to_action               # Convert, keeping the block type
  python main.py convert call_to_action --fully-replace           # Convert and delete the block type
  python main.py convert call_to_action --policy augment          # Add links next to the blocks
  python main.py convert call_to_action --skip-deletions --suffix test  # Debug run
        """
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to the configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Blocklift 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-blocks", help="List embeddable block types")

    analyze = subparsers.add_parser("analyze", help="Analyze where a block type is used")
    analyze.add_argument("block", help="Block type id or api_key")

    convert = subparsers.add_parser("convert", help="Convert a block type into a model")
    convert.add_argument("block", help="Block type id or api_key")
    convert.add_argument(
        "--policy",
        choices=[policy.value for policy in ReplacementPolicy],
        help="replace: swap blocks for links; augment: keep blocks and add links"
    )
    convert.add_argument(
        "--fully-replace",
        action="store_true",
        default=None,
        help="Delete the original block type after a replace conversion"
    )
    convert.add_argument(
        "--skip-deletions",
        action="store_true",
        default=None,
        help="Never delete fields, types or block data (debug mode)"
    )
    convert.add_argument(
        "--suffix",
        type=str,
        help="Suffix for the generated model name and api_key"
    )
    convert.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Log every created and updated record"
    )
    convert.add_argument(
        "--no-state",
        action="store_true",
        help="Do not persist mappings in the state database"
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)
    config = get_config()
    if args.config:
        config.config_path = Path(args.config)
        config.reload()
    setup_logging()

    logging.info("Blocklift - Block to Model Converter")

    try:
        if args.command == "list-blocks":
            run_list_blocks()
        elif args.command == "analyze":
            run_analyze(args.block)
        else:
            options = ConversionOptions.from_config(
                config,
                replacement_policy=ReplacementPolicy(args.policy) if args.policy else None,
                fully_replace=args.fully_replace,
                skip_deletions=args.skip_deletions,
                name_suffix=args.suffix,
                verbose=args.verbose,
            )
            use_state = config.state_enabled and not args.no_state
            if not run_convert(args.block, options, use_state):
                sys.exit(1)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")

    except Exception as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Command line interface for the differential expression pipeline.
"""

import argparse
import logging
import sys
from pathlib import Path

import tomli
from tomli_w import dump

from .pipeline import DifferentialExpressionPipeline
from .utils import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a two-group differential expression analysis"
    )

    parser.add_argument(
        "config_file",
        type=str,
        help="Path to TOML configuration file"
    )

    input_group = parser.add_argument_group("Input overrides")
    input_group.add_argument(
        "--expression-file",
        type=str,
        help="Override expression table path"
    )
    input_group.add_argument(
        "--id-column",
        type=str,
        help="Override gene identifier column name"
    )

    output_group = parser.add_argument_group("Output overrides")
    output_group.add_argument(
        "--output-dir",
        type=str,
        help="Override output directory"
    )
    output_group.add_argument(
        "--no-plots",
        action="store_true",
        help="Do not write figures"
    )

    analysis_group = parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--pseudocount",
        type=float,
        help="Override pseudocount added before the log2 transform"
    )
    analysis_group.add_argument(
        "--filter-threshold",
        type=float,
        help="Override minimum mean log2 expression"
    )
    analysis_group.add_argument(
        "--alpha",
        type=float,
        help="Override adjusted p-value cutoff"
    )
    analysis_group.add_argument(
        "--fc-cutoff",
        type=float,
        help="Override absolute log2 fold change cutoff"
    )
    analysis_group.add_argument(
        "--welch",
        action="store_true",
        help="Use Welch's t-test instead of Student's"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace) -> dict:
    """Update configuration with command line overrides."""
    for section in ('input', 'output', 'analysis', 'plots'):
        config.setdefault(section, {})

    if args.expression_file:
        config['input']['expression_file'] = args.expression_file
    if args.id_column:
        config['input']['id_column'] = args.id_column

    if args.output_dir:
        config['output']['directory'] = args.output_dir
    if args.no_plots:
        config['plots']['enabled'] = False

    # Zero is a meaningful threshold, so test against None
    if args.pseudocount is not None:
        config['analysis']['pseudocount'] = args.pseudocount
    if args.filter_threshold is not None:
        config['analysis']['filter_threshold'] = args.filter_threshold
    if args.alpha is not None:
        config['analysis']['alpha'] = args.alpha
    if args.fc_cutoff is not None:
        config['analysis']['fold_change_cutoff'] = args.fc_cutoff
    if args.welch:
        config['analysis']['equal_var'] = False

    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        with open(args.config_file, 'rb') as f:
            config = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        print(f"Error loading configuration file: {str(e)}", file=sys.stderr)
        sys.exit(1)

    config = update_config(config, args)

    # Set up logging first, before any pipeline operations
    output_dir = Path(config['output'].get('directory', 'results'))
    setup_logging(output_dir / 'logs', level=logging.DEBUG if args.verbose else logging.INFO)

    logging.info("Starting differential expression pipeline")
    logging.info(f"Using configuration file: {args.config_file}")

    # Save updated config to a temporary file next to the original
    temp_config_path = Path(args.config_file).parent / "temp_config.toml"
    with open(temp_config_path, 'wb') as f:
        dump(config, f)

    try:
        pipeline = DifferentialExpressionPipeline(temp_config_path)
        pipeline.run()
        logging.info("Pipeline execution completed successfully")
    except Exception as e:
        logging.error(f"Pipeline execution failed: {str(e)}")
        sys.exit(1)
    finally:
        temp_config_path.unlink()


if __name__ == "__main__":
    main()

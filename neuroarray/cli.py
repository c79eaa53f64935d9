"""
Command-line interface for the differential analysis pipeline.

Usage:
    neuroarray                                  # Run ad_neurons with defaults
    neuroarray --dataset induced_neurons        # Methylation dataset
    neuroarray --skip-plots                     # Tables only
    neuroarray --config my_analysis.yaml        # Override parameters

Examples:
    # Expression arrays, stricter significance cutoffs
    neuroarray --dataset ad_neurons --fdr 0.01 --lfc 1

    # Methylation arrays from a custom location
    neuroarray --dataset induced_neurons --raw-dir /data/idats \\
        --metadata /data/samples.tsv --output-dir results/in_run1
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .exceptions import NeuroArrayError
from .pipeline import DifferentialPipeline
from .utils.config import load_config
from .utils.logging_utils import set_verbosity, setup_logger

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neuroarray",
        description="Differential analysis of expression and methylation arrays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        "--dataset",
        default="ad_neurons",
        help="Dataset to analyze (default: ad_neurons)"
    )
    parser.add_argument(
        "--config",
        help="Path to custom configuration file"
    )
    parser.add_argument(
        "--raw-dir",
        type=Path,
        help="Raw sample tables directory (or matrix file); overrides the config"
    )
    parser.add_argument(
        "--metadata",
        type=Path,
        help="Sample metadata table; overrides the config"
    )
    parser.add_argument(
        "--annotation",
        type=Path,
        help="Probe annotation table; overrides the config"
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory for tables and plots (default: results/)"
    )
    parser.add_argument(
        "--skip-plots",
        action="store_true",
        help="Skip figure generation"
    )
    parser.add_argument(
        "--fdr",
        type=float,
        help="Adjusted p-value cutoff for significance calls"
    )
    parser.add_argument(
        "--lfc",
        type=float,
        help="Minimum absolute log2 fold change for significance calls"
    )
    parser.add_argument(
        "--log-file",
        help="Also write the log to this file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logger("neuroarray", level=logging.INFO, log_file=args.log_file)
    set_verbosity(args.verbose)

    try:
        config = load_config(config_file=args.config, dataset=args.dataset, base_dir=Path.cwd())

        if args.fdr is not None:
            config.analysis_params["fdr"] = args.fdr
        if args.lfc is not None:
            config.analysis_params["lfc"] = args.lfc
        if args.output_dir is not None:
            config.set_output_dir(args.output_dir)
        config.ensure_output_dirs()

        logger.info(f"Dataset: {args.dataset}")
        logger.info(f"Configuration: {config}")

        pipeline = DifferentialPipeline(config, skip_plots=args.skip_plots)
        run = pipeline.run(
            raw_path=args.raw_dir,
            metadata_path=args.metadata,
            annotation_path=args.annotation,
        )

    except NeuroArrayError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    logger.info("")
    logger.info("Outputs:")
    for name, path in run.outputs.items():
        logger.info(f"  {name}: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

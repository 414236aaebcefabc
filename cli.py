"""
Batch run: simulate, summarize, fit the regression, export to disk.

    physio-sim --n 160 --seed 42 --out outputs
"""

import argparse
import sys
from typing import List, Optional

from loguru import logger

from analysis import fit_revenue_regression, format_summary_lines, summarize
from export import export_results
from simulation import NumericDomainError, SimulationConfig, run_simulation
from tariffs import ConfigurationError, UnknownCodeError, load_reference_tables

_defaults = SimulationConfig()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="physio-sim",
        description="Monte-Carlo annual revenue simulation for Swiss physiotherapy practices.",
    )
    parser.add_argument("--n", type=int, default=_defaults.n_practices,
                        help="Number of practices to simulate (default: %(default)s)")
    parser.add_argument("--seed", type=int, default=_defaults.seed,
                        help="Random seed (default: %(default)s)")
    parser.add_argument("--working-days", type=float, default=_defaults.working_days_per_month,
                        help="Working days per month (default: %(default)s)")
    parser.add_argument("--chf-rate", type=float, default=_defaults.point_to_chf_rate,
                        help="CHF per tariff point (default: %(default)s)")
    parser.add_argument("--out", default="outputs",
                        help="Output directory (default: %(default)s)")
    parser.add_argument("--no-plots", action="store_true",
                        help="Skip writing the HTML plots")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level (default: %(default)s)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logger.remove()
    logger.add(sys.stderr, level=args.log_level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}")

    cfg = SimulationConfig(
        n_practices=args.n,
        seed=args.seed,
        working_days_per_month=args.working_days,
        point_to_chf_rate=args.chf_rate,
    )
    try:
        tables  = load_reference_tables()
        result  = run_simulation(cfg, tables)
        df      = result.to_frame()
        summary = summarize(df, tables)
        try:
            regression = fit_revenue_regression(df, tables)
        except ValueError as exc:
            logger.warning("Regression skipped: {}", exc)
            regression = None
        for line in format_summary_lines(summary, regression):
            logger.info(line)
        export_results(result, summary, args.out, include_plots=not args.no_plots, tables=tables)
    except (ConfigurationError, UnknownCodeError, NumericDomainError) as exc:
        logger.error("Simulation aborted: {}", exc)
        return 1

    logger.info("Done. Outputs in {}", args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())

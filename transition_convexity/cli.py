from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from . import scenarios
from .config import DEFAULT_CONFIG, IntegrationSettings
from .export import export_frame

logger = logging.getLogger(__name__)

SWEEPS = {
    "fixing-dates": scenarios.adjusted_forward_by_fixing_date,
    "correlation": scenarios.adjusted_forward_by_correlation,
    "mean-reversion": scenarios.adjusted_forward_by_mean_reversion,
    "volatility": scenarios.adjusted_forward_by_volatility,
    "volatility-ratio": scenarios.adjusted_forward_by_volatility_ratio,
    "g2pp-fixing-dates": scenarios.g2pp_adjusted_forward_by_fixing_date,
}

GRIDS = {
    "correlation-volatility": scenarios.correlation_volatility_grid,
    "fixing-mean-reversion": scenarios.fixing_date_mean_reversion_grid,
    "big-bang-fixing": scenarios.big_bang_fixing_grid,
    "hybrid-correlation": scenarios.hybrid_correlation_grid,
    "hybrid-volatility-mean-reversion": scenarios.hybrid_volatility_mean_reversion_grid,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Benchmark transition convexity adjustment analyses.")
    parser.add_argument(
        "analysis",
        choices=sorted([*SWEEPS, *GRIDS, "compare"]),
        help="Analysis to run; 'compare' checks analytic against numerical leg factors.",
    )
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_CONFIG.output_dir, help="Directory for CSV output.")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for grid analyses.")
    parser.add_argument("--half-width", type=float, default=10.0, help="Integration box half-width (std devs).")
    parser.add_argument("--dimension", type=int, choices=(2, 3), default=2, help="Numerical integration dimension.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser


def run(analysis: str, workers: Optional[int] = None, half_width: float = 10.0, dimension: int = 2) -> pd.DataFrame:
    if analysis in SWEEPS:
        return SWEEPS[analysis](max_workers=workers)
    if analysis in GRIDS:
        return GRIDS[analysis](max_workers=workers)
    if analysis == "compare":
        settings = IntegrationSettings(half_width=half_width)
        return scenarios.analytic_numerical_comparison(settings=settings, dimension=dimension)
    raise ValueError(f"Unknown analysis: {analysis}")


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    out = run(args.analysis, args.workers, args.half_width, args.dimension)
    print(out.to_string())

    out_path = args.output_dir / f"{args.analysis.replace('-', '_')}.csv"
    export_frame(out, out_path, index=args.analysis in GRIDS)
    logger.info("Saved %s", out_path)


if __name__ == "__main__":
    main()

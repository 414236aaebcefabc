"""
Write simulation outputs to disk: dataset CSV, the four summary CSVs and the
six standard plots as standalone HTML.
"""

from pathlib import Path
from typing import List, Optional, Union

import pandas as pd
from loguru import logger

import charts
from analysis import GROUP_STAT_COLS, SummaryTables
from simulation import SimulationResult, sensitivity_grid
from tariffs import ReferenceTables

SUMMARY_FILES = {
    "overall":      "results_overall.csv",
    "by_canton":    "results_by_canton.csv",
    "by_treatment": "results_by_treatment.csv",
    "by_physio":    "results_by_physio.csv",
}
OVERALL_STAT_COLS = ["mean_revenue", "median_revenue", "sd_revenue", "min_revenue", "max_revenue"]


def round_for_report(name: str, table: pd.DataFrame) -> pd.DataFrame:
    """Overall to the Rappen, grouped tables to whole CHF."""
    out = table.copy()
    if name == "overall":
        out[OVERALL_STAT_COLS] = out[OVERALL_STAT_COLS].round(2)
    else:
        stat_cols = [c for c in GROUP_STAT_COLS if c != "n_practices"]
        out[stat_cols] = out[stat_cols].round(0)
    return out


def export_results(result: SimulationResult, summaries: SummaryTables,
                   out_dir: Union[str, Path] = "outputs",
                   include_plots: bool = True,
                   tables: Optional[ReferenceTables] = None) -> List[Path]:
    """Write everything under out_dir (plots under out_dir/plots). Returns written paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    df = result.to_frame()
    path = out_dir / "practices.csv"
    df.to_csv(path, index=False)
    written.append(path)

    for name, table in summaries.as_dict().items():
        path = out_dir / SUMMARY_FILES[name]
        round_for_report(name, table).to_csv(path, index=False)
        written.append(path)
    logger.info("Wrote dataset and {} summary tables to {}", len(SUMMARY_FILES), out_dir)

    if include_plots:
        plot_dir = out_dir / "plots"
        plot_dir.mkdir(parents=True, exist_ok=True)
        grid = sensitivity_grid(result.config, tables)
        for stem, fig in charts.standard_figures(df, grid).items():
            path = plot_dir / f"{stem}.html"
            fig.write_html(str(path), include_plotlyjs="cdn")
            written.append(path)
        logger.info("Wrote {} plots to {}", len(written) - len(SUMMARY_FILES) - 1, plot_dir)

    return written

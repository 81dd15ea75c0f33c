#!/usr/bin/env python3
"""
Main script for running the arthritis/disability survey analysis.
"""

# Pipeline overview (README-style):
# 1) Simulate (or, in production, receive) a complete-case analysis table
#    with normalized weights.
# 2) Build the survey design: survey year as stratum, one row per cluster
#    unless a cluster column is requested.
# 3) Prevalence by year and demographic domain.
# 4) Crude and adjusted trends with annual percentage change.
# 5) Crude and adjusted association, effect modification by age and sex.
# 6) Population attributable fraction and outcome-definition sensitivity.
# 7) Export result tables and a text summary.

import argparse
import logging
import os
import sys
import time

import pandas as pd

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from svyest import (
    DEFAULT_CONFIG,
    association_models,
    build_design,
    odds_ratio,
    odds_ratio_table,
    population_attributable_fraction,
    prevalence_table,
    sensitivity_comparison,
    stratified_fits,
    stratified_odds_ratios,
    trend_analysis,
    weighted_mean,
)
from svyest.output import save_tables_to_csv, write_summary_text
from svyest.reporting import add_formatted_ci_columns
from svyest.synthetic import simulate_analysis_table


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--rows", type=int, default=11_000)
    parser.add_argument("--seed", type=int, default=2024)
    parser.add_argument(
        "--log-or",
        type=float,
        default=0.0,
        help="Simulated effect of arthritis on ADL/IADL log odds.",
    )
    parser.add_argument(
        "--clusters-per-stratum",
        type=int,
        default=None,
        help="Simulate clustered sampling within each survey year.",
    )
    parser.add_argument("--output", default="output")
    return parser.parse_args(argv)


def main(argv=None):
    """Main execution function with step timing."""
    args = parse_args(argv)
    cfg = DEFAULT_CONFIG
    start_time = time.time()
    logging.info("Initializing survey analysis pipeline")

    table = simulate_analysis_table(
        n_rows=args.rows,
        seed=args.seed,
        arthritis_log_odds_ratio=args.log_or,
        clusters_per_stratum=args.clusters_per_stratum,
    )
    cluster_col = "cluster" if args.clusters_per_stratum else cfg.cluster_col
    design = build_design(
        table, cfg.weight_col, strata_col=cfg.strata_col, cluster_col=cluster_col
    )
    logging.info(
        "Design: %d rows, %d clusters, %d strata (df=%d)",
        design.n_rows,
        design.n_clusters,
        design.n_strata,
        design.degrees_of_freedom,
    )

    tables = {}
    step_start = time.time()
    indicators = [cfg.exposure, cfg.outcome]
    tables["prevalence_overall"] = prevalence_table(design, indicators)
    for group in cfg.prevalence_groups:
        tables[f"prevalence_by_{group}"] = prevalence_table(design, indicators, group)
    logging.info("Prevalence tables completed in %.2f seconds", time.time() - step_start)

    step_start = time.time()
    tables["trend_crude"] = trend_analysis(design, indicators, cfg.year_col)
    tables["trend_adjusted"] = trend_analysis(
        design, indicators, cfg.year_col, cfg.covariates, cfg.reference_levels
    )
    logging.info("Trend models completed in %.2f seconds", time.time() - step_start)

    step_start = time.time()
    models = association_models(
        design, cfg.outcome, cfg.exposure, cfg.covariates, cfg.reference_levels
    )
    tables["crude_association"] = odds_ratio_table(models.crude)
    tables["adjusted_association"] = odds_ratio_table(models.adjusted)
    for modifier in cfg.stratify_by:
        fits = stratified_fits(design, modifier, cfg.outcome, [cfg.exposure])
        tables[f"stratified_by_{modifier}"] = stratified_odds_ratios(
            fits, cfg.exposure
        ).rename(columns={"group": modifier})
    logging.info("Association models completed in %.2f seconds", time.time() - step_start)

    exposure_prevalence = weighted_mean(cfg.exposure, design)
    outcome_prevalence = weighted_mean(cfg.outcome, design)
    adjusted_or = odds_ratio(models.adjusted, cfg.exposure)
    paf = population_attributable_fraction(
        exposure_prevalence,
        adjusted_or,
        outcome_prevalence=outcome_prevalence.estimate,
    )
    paf_row = paf.as_row()
    paf_row.update(
        {
            "exposure_prevalence": exposure_prevalence.estimate,
            "adjusted_or": adjusted_or.value,
        }
    )
    tables["population_attributable_fraction"] = pd.DataFrame([paf_row])

    tables["sensitivity_analysis"] = sensitivity_comparison(
        design,
        cfg.alternate_outcomes,
        cfg.exposure,
        cfg.covariates,
        cfg.reference_levels,
    )

    report_tables = {
        name: (
            add_formatted_ci_columns(df)
            if {"estimate", "ci_low", "ci_high"} <= set(df.columns)
            else df
        )
        for name, df in tables.items()
    }
    paths = save_tables_to_csv(report_tables, args.output)
    crude = tables["crude_association"]
    adjusted = tables["adjusted_association"]
    summary_path = write_summary_text(
        {
            "Prevalence by survey year": tables["prevalence_by_survey_year"],
            "Crude trends": tables["trend_crude"],
            "Adjusted trends": tables["trend_adjusted"],
            "Crude association": crude[crude["term"] == cfg.exposure],
            "Adjusted association": adjusted[adjusted["term"] == cfg.exposure],
            **{
                f"Stratified by {modifier}": tables[f"stratified_by_{modifier}"]
                for modifier in cfg.stratify_by
            },
            "Population attributable fraction": tables["population_attributable_fraction"],
            "Sensitivity": tables["sensitivity_analysis"],
        },
        os.path.join(args.output, "statistical_analysis_summary.txt"),
        "Arthritis and Disability Survey Analysis Summary",
    )

    logging.info(
        "Adjusted OR for %s: %.3f (%.3f-%.3f)",
        cfg.exposure,
        adjusted_or.value,
        adjusted_or.ci_low,
        adjusted_or.ci_high,
    )
    logging.info("Approximate PAF: %.1f%%", 100.0 * paf.value)
    logging.info("Generated %d tables and summary %s", len(paths), summary_path)
    logging.info("Total execution time: %.2f seconds", time.time() - start_time)
    return 0


if __name__ == "__main__":
    sys.exit(main())

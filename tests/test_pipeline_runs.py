import logging

import pandas as pd

import main


def test_pipeline_writes_tables_and_summary(caplog, tmp_path):
    caplog.set_level(logging.INFO)
    status = main.main(["--rows", "3000", "--seed", "5", "--output", str(tmp_path)])
    assert status == 0

    adjusted = pd.read_csv(tmp_path / "adjusted_association.csv")
    assert "arthritis" in set(adjusted["term"])
    assert "estimate (95% CI)" in adjusted.columns

    stratified = pd.read_csv(tmp_path / "stratified_by_age_group.csv")
    assert list(stratified["age_group"]) == ["65-74", "75-84", "85+"]

    summary = (tmp_path / "statistical_analysis_summary.txt").read_text(encoding="utf-8")
    assert "Population attributable fraction" in summary
    for section in (
        "Prevalence by survey year",
        "Crude trends",
        "Adjusted trends",
        "Stratified by age_group",
        "Stratified by sex",
    ):
        assert f"--- {section} ---" in summary
    assert "Total execution time" in caplog.text

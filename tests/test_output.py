"""Tests for table export and the text summary."""

import os

import pandas as pd

from svyest.output import save_tables_to_csv, write_summary_text


def test_save_tables_to_csv_round_trips(tmp_path):
    tables = {
        "prevalence_overall": pd.DataFrame(
            {
                "variable": ["arthritis"],
                "estimate": [0.41],
                "ci_low": [0.39],
                "ci_high": [0.43],
            }
        ),
        "empty": pd.DataFrame(columns=["term", "estimate"]),
    }
    output_dir = tmp_path / "results"
    paths = save_tables_to_csv(tables, output_dir=str(output_dir))

    assert set(paths) == {"prevalence_overall", "empty"}
    assert os.path.exists(paths["prevalence_overall"])
    loaded = pd.read_csv(paths["prevalence_overall"])
    assert loaded.loc[0, "variable"] == "arthritis"
    assert loaded.loc[0, "estimate"] == 0.41


def test_write_summary_text(tmp_path):
    path = tmp_path / "summary" / "statistical_analysis_summary.txt"
    write_summary_text(
        {
            "Adjusted association": pd.DataFrame({"term": ["arthritis"], "estimate": [1.8]}),
            "Nothing fitted": pd.DataFrame(),
        },
        str(path),
        "Survey Analysis Summary",
    )
    text = path.read_text(encoding="utf-8")
    title = "Survey Analysis Summary"
    assert text.startswith(f"{title}\n{'=' * len(title)}\n")
    assert "--- Adjusted association ---" in text
    assert "arthritis" in text
    assert "(none)" in text

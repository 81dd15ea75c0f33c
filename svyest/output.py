"""Write result tables and a plain-text summary to reproducible files.

This module is the boundary between in-memory results and the artifacts
consumed by the reporting collaborator.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Mapping

import pandas as pd

logger = logging.getLogger(__name__)


def save_tables_to_csv(
    tables: Mapping[str, pd.DataFrame], output_dir: str = "output"
) -> Dict[str, str]:
    """Save named result tables as ``<name>.csv`` files.

    Args:
        tables (Mapping[str, pandas.DataFrame]): Table name to result table.
        output_dir (str): Directory where CSV outputs are written; created if
            missing.

    Returns:
        dict[str, str]: Table name to written path.
    """
    os.makedirs(output_dir, exist_ok=True)
    paths = {}
    for name, table in tables.items():
        path = os.path.join(output_dir, f"{name}.csv")
        table.to_csv(path, index=False)
        logger.info("Saved %s (%d rows) to %s", name, len(table), path)
        paths[name] = path
    return paths


def write_summary_text(
    sections: Mapping[str, pd.DataFrame], path: str, title: str
) -> str:
    """Write a sectioned plain-text summary of result tables."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(f"{title}\n{'=' * len(title)}\n")
        for heading, table in sections.items():
            handle.write(f"\n--- {heading} ---\n")
            handle.write(table.to_string(index=False) if not table.empty else "(none)")
            handle.write("\n")
    logger.info("Saved summary to %s", path)
    return path

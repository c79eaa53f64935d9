"""
Result table export and significance summaries.
"""

import logging
from pathlib import Path
from typing import Union

import pandas as pd

from ..containers import ModelResult
from ..models.multiple_testing import decide_tests

logger = logging.getLogger(__name__)


def summarize(result: ModelResult, p_value: float = 0.05, lfc: float = 0.0) -> pd.DataFrame:
    """
    Count up, down and not-significant rows of a result.

    Args:
        result: ModelResult
        p_value: Adjusted p-value cutoff
        lfc: Minimum absolute log-fold-change

    Returns:
        One-row DataFrame indexed by contrast name with columns
        Down, NotSig, Up, Untested
    """
    calls = decide_tests(result, p_value=p_value, lfc=lfc)
    untested = result.table["P.Value"].isna()
    summary = pd.DataFrame(
        {
            "Down": [int((calls == -1).sum())],
            "NotSig": [int(((calls == 0) & ~untested).sum())],
            "Up": [int((calls == 1).sum())],
            "Untested": [int(untested.sum())],
        },
        index=pd.Index([result.contrast], name="contrast"),
    )
    return summary


class ResultWriter:
    """
    Write ranked result tables to CSV.
    """

    def write_table(self, result: ModelResult, output_path: Union[str, Path]) -> Path:
        """
        Write the full result table ranked by adjusted p-value.

        Args:
            result: ModelResult, optionally annotated
            output_path: Destination CSV path

        Returns:
            Path written
        """
        output_path = Path(output_path)
        logger.info(f"Exporting result table -> {output_path}")

        table = result.sorted()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        table.to_csv(output_path, index=True, index_label="probe_id")

        logger.info(f"  {len(table)} rows saved")
        return output_path

    def write_summary(
        self,
        result: ModelResult,
        output_path: Union[str, Path],
        p_value: float = 0.05,
        lfc: float = 0.0
    ) -> pd.DataFrame:
        """Write the up/down summary table and return it."""
        output_path = Path(output_path)
        summary = summarize(result, p_value=p_value, lfc=lfc)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        summary.to_csv(output_path)

        row = summary.iloc[0]
        logger.info(
            f"{result.contrast}: {row['Up']} up, {row['Down']} down at "
            f"adj.P.Val <= {p_value}, |logFC| >= {lfc}"
        )
        return summary

"""
Row-level quality filtering of intensity matrices.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from ..containers import IntensityMatrix, RawArrayData
from ..exceptions import IntegrityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityReport:
    """Row counts before and after filtering."""

    rows_in: int
    removed_missing: int
    removed_detection: int
    removed_excluded: int = 0

    @property
    def rows_out(self) -> int:
        return self.rows_in - self.removed_missing - self.removed_detection - self.removed_excluded

    @property
    def removed(self) -> int:
        return self.rows_in - self.rows_out


class QualityFilter:
    """
    Drop probes with missing values or failing detection p-values.

    A probe passes detection when the fraction of samples with
    detection p-value below the threshold is at least min_pass_fraction.
    Columns are never removed.
    """

    def __init__(
        self,
        detection_threshold: float = 0.01,
        min_pass_fraction: float = 1.0,
        exclude_prefixes: Optional[Sequence[str]] = None
    ):
        """
        Initialize quality filter.

        Args:
            detection_threshold: Detection p-value a measurement must be below
            min_pass_fraction: Fraction of samples that must pass detection
            exclude_prefixes: Probe id prefixes to drop (control or SNP probes)
        """
        self.detection_threshold = detection_threshold
        self.min_pass_fraction = min_pass_fraction
        self.exclude_prefixes = tuple(exclude_prefixes or ())
        self.report_: Optional[QualityReport] = None

    def filter(
        self,
        matrix: IntensityMatrix,
        detection: Optional[pd.DataFrame] = None
    ) -> IntensityMatrix:
        """
        Filter rows of a single matrix.

        Args:
            matrix: IntensityMatrix to filter
            detection: Optional detection p-values with the matrix's labels

        Returns:
            Row-reduced IntensityMatrix
        """
        keep = self._keep_mask(matrix.values, detection)
        return matrix.subset_rows(matrix.values.index[keep])

    def filter_raw(self, raw: RawArrayData) -> RawArrayData:
        """
        Apply one row mask to every channel so channels stay aligned.

        A probe with a missing value in any channel is dropped from all.
        """
        combined = pd.concat(
            [m.values for m in raw.channels.values()], axis=1, keys=list(raw.channels)
        )
        keep = self._keep_mask(combined, raw.detection)
        kept_ids = combined.index[keep]

        channels = {name: m.subset_rows(kept_ids) for name, m in raw.channels.items()}
        detection = raw.detection.loc[kept_ids] if raw.detection is not None else None
        return replace(raw, channels=channels, detection=detection)

    def _keep_mask(
        self,
        values: pd.DataFrame,
        detection: Optional[pd.DataFrame]
    ) -> np.ndarray:
        n_rows = len(values)

        excluded = np.zeros(n_rows, dtype=bool)
        if self.exclude_prefixes:
            excluded = values.index.astype(str).str.startswith(self.exclude_prefixes)
            excluded = np.asarray(excluded, dtype=bool)

        missing = values.isna().any(axis=1).to_numpy() & ~excluded

        failing = np.zeros(n_rows, dtype=bool)
        if detection is not None:
            if not detection.index.equals(values.index):
                raise IntegrityError("Detection p-values are not keyed by the matrix probes")
            passed = (detection < self.detection_threshold).mean(axis=1).to_numpy()
            failing = (passed < self.min_pass_fraction) & ~missing & ~excluded

        self.report_ = QualityReport(
            rows_in=n_rows,
            removed_missing=int(missing.sum()),
            removed_detection=int(failing.sum()),
            removed_excluded=int(excluded.sum()),
        )

        if self.exclude_prefixes:
            logger.info(
                f"Removed {self.report_.removed_excluded} probes with excluded prefixes "
                f"{list(self.exclude_prefixes)}"
            )
        logger.info(f"Removed {self.report_.removed_missing} probes with missing values")
        if detection is not None:
            logger.info(
                f"Removed {self.report_.removed_detection} probes failing detection "
                f"(p < {self.detection_threshold} in {self.min_pass_fraction:.0%} of samples)"
            )
        logger.info(f"Kept {self.report_.rows_out} of {n_rows} probes")

        return ~(excluded | missing | failing)

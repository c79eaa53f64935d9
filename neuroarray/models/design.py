"""
Design matrix and contrast construction from sample annotations.
"""

import logging
from typing import List, Optional, Sequence

import pandas as pd

from ..containers import ContrastSpec, DesignMatrix, SampleAnnotation
from ..exceptions import ConfigError, format_ids

logger = logging.getLogger(__name__)


class DesignBuilder:
    """
    Build a group-means design: one binary column per level, no intercept.

    Rows follow the sample order of the intensity matrix, so the design can
    be used positionally against matrix columns.
    """

    def __init__(self, covariate: str, levels: Optional[Sequence[str]] = None):
        """
        Initialize design builder.

        Args:
            covariate: Sample annotation column holding the group labels
            levels: Group levels in design column order; defaults to the
                sorted distinct values of the covariate
        """
        self.covariate = covariate
        self.levels = [str(level) for level in levels] if levels is not None else None

    def build(
        self,
        samples: SampleAnnotation,
        sample_order: Sequence[str]
    ) -> DesignMatrix:
        """
        Build the design matrix for samples in the given order.

        Args:
            samples: Sample annotation
            sample_order: Sample ids in intensity-matrix column order

        Returns:
            DesignMatrix with rows in sample_order

        Raises:
            ConfigError: if the covariate is absent, has missing values,
                undeclared values, or fewer than 2 levels
        """
        if self.covariate not in samples.table.columns:
            raise ConfigError(
                f"Grouping covariate '{self.covariate}' not in sample annotation; "
                f"available: {list(samples.table.columns)}"
            )

        aligned = samples.align_to(sample_order)
        groups = aligned.table[self.covariate]

        missing = groups.index[groups.isna()]
        if len(missing) > 0:
            raise ConfigError(
                f"Samples with missing '{self.covariate}': {format_ids(missing)}"
            )
        groups = groups.astype(str)

        levels = self._resolve_levels(groups)
        matrix = pd.DataFrame(
            {level: (groups == level).astype(int) for level in levels},
            index=pd.Index(list(sample_order), name="sample_id"),
        )

        counts = ", ".join(f"{level}={int(matrix[level].sum())}" for level in levels)
        logger.info(f"Design on '{self.covariate}': {counts}")
        return DesignMatrix(matrix=matrix, covariate=self.covariate)

    def _resolve_levels(self, groups: pd.Series) -> List[str]:
        observed = sorted(groups.unique())
        if self.levels is None:
            levels = observed
        else:
            undeclared = groups.index[~groups.isin(self.levels)]
            if len(undeclared) > 0:
                raise ConfigError(
                    f"Samples with '{self.covariate}' outside levels {self.levels}: "
                    f"{format_ids(undeclared)}"
                )
            empty = [level for level in self.levels if level not in observed]
            if empty:
                raise ConfigError(f"Levels without samples: {empty}")
            levels = list(self.levels)

        if len(levels) < 2:
            raise ConfigError(
                f"Grouping covariate '{self.covariate}' needs at least 2 levels, got {levels}"
            )
        return levels

    @staticmethod
    def contrast(
        design: DesignMatrix,
        numerator: str,
        denominator: str,
        name: Optional[str] = None
    ) -> ContrastSpec:
        """
        Contrast numerator - denominator between two design levels.

        Raises:
            ConfigError: if either level is not a design column
        """
        numerator, denominator = str(numerator), str(denominator)
        unknown = [level for level in (numerator, denominator) if level not in design.levels]
        if unknown:
            raise ConfigError(f"Contrast levels {unknown} not in design levels {design.levels}")
        if numerator == denominator:
            raise ConfigError(f"Contrast compares level '{numerator}' with itself")

        weights = pd.Series(0.0, index=design.levels)
        weights[numerator] = 1.0
        weights[denominator] = -1.0
        return ContrastSpec(
            name=name or f"{numerator}-{denominator}",
            weights=weights,
            numerator=numerator,
            denominator=denominator,
        )

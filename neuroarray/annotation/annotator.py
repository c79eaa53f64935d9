"""
Key-based join of model results to probe annotation.
"""

import logging
from enum import Enum
from typing import Union

from ..containers import ANNOTATION_COLUMNS, AnnotationTable, ModelResult
from ..exceptions import ConfigError, IntegrityError, format_ids

logger = logging.getLogger(__name__)


class AnnotationPolicy(Enum):
    """How to treat result rows that have no annotation."""

    # Every row must be annotated (expression arrays)
    STRICT = "strict"
    # Unannotated rows are dropped with a warning, up to a limit (methylation arrays)
    TOLERANT = "tolerant"

    @classmethod
    def parse(cls, value: Union[str, "AnnotationPolicy"]) -> "AnnotationPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigError(
                f"Unknown annotation policy '{value}', expected one of "
                f"{[p.value for p in cls]}"
            ) from None


class Annotator:
    """
    Attach gene symbol, chromosome, position and feature type to results.

    Rows are matched by probe id lookup, never by position. The key sets
    are validated against the coverage policy before anything is joined.
    """

    def __init__(
        self,
        policy: Union[str, AnnotationPolicy] = AnnotationPolicy.STRICT,
        max_missing_fraction: float = 0.5
    ):
        """
        Initialize annotator.

        Args:
            policy: STRICT or TOLERANT coverage policy
            max_missing_fraction: Under TOLERANT, the largest fraction of
                result rows allowed to lack annotation
        """
        self.policy = AnnotationPolicy.parse(policy)
        if not 0 <= max_missing_fraction <= 1:
            raise ConfigError(f"max_missing_fraction must be in [0, 1], got {max_missing_fraction}")
        self.max_missing_fraction = max_missing_fraction

    @classmethod
    def from_config(cls, config) -> "Annotator":
        params = config.annotation_params
        return cls(
            policy=params.get("policy", "strict"),
            max_missing_fraction=params.get("max_missing_fraction", 0.5),
        )

    def annotate(self, result: ModelResult, annotation: AnnotationTable) -> ModelResult:
        """
        Join annotation columns onto a model result.

        When TOLERANT drops unannotated rows, the remaining rows keep the
        adj.P.Val computed over all tested rows; the adjustment is not
        repeated on the subset.

        Args:
            result: ModelResult indexed by probe or feature id
            annotation: AnnotationTable indexed by probe id

        Returns:
            ModelResult with the annotation columns appended; row order
            of the input result is preserved

        Raises:
            IntegrityError: if ids are missing under STRICT, or more than
                max_missing_fraction are missing under TOLERANT
        """
        logger.info(f"Annotating {len(result)} rows with {self.policy.value} coverage policy")

        # Key sets are compared before any lookup; difference returns sorted ids
        missing = result.table.index.difference(annotation.table.index)

        if len(missing) > 0:
            self._check_coverage(missing, len(result))

        missing_set = set(missing)
        kept = [row_id for row_id in result.row_ids if row_id not in missing_set]
        if len(missing) > 0:
            result = result.subset_rows(kept)

        joined = annotation.table.loc[kept, ANNOTATION_COLUMNS]
        if not joined.index.equals(result.table.index):
            raise IntegrityError("Annotation lookup returned rows out of result order")

        n_symbols = int(joined["gene_symbol"].notna().sum())
        logger.info(f"Annotated {len(joined)} rows; {n_symbols} with a gene symbol")
        return result.with_annotation(joined)

    def _check_coverage(self, missing, n_rows: int) -> None:
        fraction = len(missing) / n_rows if n_rows else 0.0

        if self.policy is AnnotationPolicy.STRICT:
            raise IntegrityError(
                f"{len(missing)} result rows have no annotation: {format_ids(missing)}"
            )

        if fraction > self.max_missing_fraction:
            raise IntegrityError(
                f"{fraction:.1%} of result rows lack annotation, above the "
                f"{self.max_missing_fraction:.0%} limit: {format_ids(missing)}"
            )

        logger.warning(
            f"Dropping {len(missing)} of {n_rows} rows ({fraction:.1%}) without annotation: "
            f"{format_ids(missing)}"
        )

"""
Typed records passed between pipeline stages.

Every record validates its fields at construction and is frozen: a stage
that changes data returns a new record instead of mutating its input.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import ConfigError, IntegrityError, ParseError, format_ids

logger = logging.getLogger(__name__)

VALID_SCALES = ("raw", "log2", "beta", "m_value")
ARRAY_TYPES = ("expression", "methylation")

RESULT_COLUMNS = ["logFC", "AveExpr", "t", "P.Value", "adj.P.Val"]
ANNOTATION_COLUMNS = ["gene_symbol", "chromosome", "position", "feature_type"]


def _check_unique(index: pd.Index, what: str) -> None:
    duplicated = index[index.duplicated()].unique()
    if len(duplicated) > 0:
        raise ParseError(f"Duplicate {what} identifiers: {format_ids(duplicated)}")


@dataclass(frozen=True, eq=False)
class IntensityMatrix:
    """
    Probes x samples table of intensities or methylation measures.

    Attributes:
        values: DataFrame with unique probe ids as index and unique
            sample ids as columns
        scale: One of "raw", "log2", "beta", "m_value"
        feature_map: Optional probe id -> logical feature id mapping for
            arrays with several probes per feature
    """

    values: pd.DataFrame
    scale: str = "raw"
    feature_map: Optional[pd.Series] = None

    def __post_init__(self):
        if self.scale not in VALID_SCALES:
            raise ConfigError(f"Unknown value scale '{self.scale}', expected one of {VALID_SCALES}")

        _check_unique(self.values.index, "probe")
        _check_unique(self.values.columns, "sample")

        non_numeric = [
            c for c in self.values.columns
            if not pd.api.types.is_numeric_dtype(self.values[c])
        ]
        if non_numeric:
            raise ParseError(f"Non-numeric values in samples: {format_ids(non_numeric)}")

        if self.scale == "beta":
            data = self.values.to_numpy(dtype=float)
            with np.errstate(invalid="ignore"):
                outside = np.isfinite(data) & ((data < 0) | (data > 1))
            if outside.any():
                samples = self.values.columns[outside.any(axis=0)]
                raise ParseError(
                    f"Beta values outside [0, 1] in samples: {format_ids(samples)}"
                )

        if self.feature_map is not None:
            missing = self.values.index.difference(self.feature_map.index)
            if len(missing) > 0:
                raise ParseError(f"Probes without a feature mapping: {format_ids(missing)}")

    @property
    def probe_ids(self) -> List[str]:
        return self.values.index.tolist()

    @property
    def sample_ids(self) -> List[str]:
        return self.values.columns.tolist()

    @property
    def shape(self):
        return self.values.shape

    def subset_rows(self, keep: Sequence[str]) -> "IntensityMatrix":
        """Return a row subset; columns are never changed."""
        values = self.values.loc[list(keep)]
        feature_map = None
        if self.feature_map is not None:
            feature_map = self.feature_map.loc[values.index]
        return replace(self, values=values, feature_map=feature_map)

    def with_values(self, values: pd.DataFrame, scale: Optional[str] = None) -> "IntensityMatrix":
        """Return a matrix with transformed values and the same sample columns."""
        if list(values.columns) != self.sample_ids:
            raise IntegrityError("Transformed values must keep the sample columns in order")
        feature_map = self.feature_map
        if feature_map is not None and not values.index.equals(self.values.index):
            feature_map = None
        return IntensityMatrix(values=values, scale=scale or self.scale, feature_map=feature_map)


@dataclass(frozen=True, eq=False)
class SampleAnnotation:
    """Per-sample covariates keyed by unique sample id."""

    table: pd.DataFrame

    def __post_init__(self):
        _check_unique(self.table.index, "sample")

    @property
    def sample_ids(self) -> List[str]:
        return self.table.index.tolist()

    def align_to(self, sample_ids: Sequence[str]) -> "SampleAnnotation":
        """
        Reorder rows to match the given sample ids exactly.

        Raises:
            ParseError: if any sample id has no annotation row, or the
                annotation holds samples that are not in sample_ids
        """
        sample_ids = list(sample_ids)
        missing = [s for s in sample_ids if s not in self.table.index]
        if missing:
            raise ParseError(f"Samples without metadata: {format_ids(missing)}")

        extra = self.table.index.difference(sample_ids)
        if len(extra) > 0:
            raise ParseError(f"Metadata samples without array data: {format_ids(extra)}")

        return SampleAnnotation(table=self.table.loc[sample_ids])


@dataclass(frozen=True, eq=False)
class RawArrayData:
    """
    Everything the loader reads for one dataset.

    Attributes:
        channels: Channel name -> IntensityMatrix ("intensity" for
            expression arrays; "methylated"/"unmethylated" or "beta"
            for methylation arrays)
        samples: Sample annotation aligned to the channel columns
        detection: Optional detection p-values, same labels as the channels
        array_type: "expression" or "methylation"
    """

    channels: Dict[str, IntensityMatrix]
    samples: SampleAnnotation
    detection: Optional[pd.DataFrame] = None
    array_type: str = "expression"

    def __post_init__(self):
        if self.array_type not in ARRAY_TYPES:
            raise ConfigError(f"Unknown array type '{self.array_type}'")
        if not self.channels:
            raise ParseError("No intensity channels loaded")

        reference = next(iter(self.channels.values()))
        for name, matrix in self.channels.items():
            if not matrix.values.index.equals(reference.values.index):
                raise IntegrityError(f"Channel '{name}' probes differ from the other channels")
            if matrix.sample_ids != reference.sample_ids:
                raise IntegrityError(f"Channel '{name}' samples differ from the other channels")

        if self.samples.sample_ids != reference.sample_ids:
            raise IntegrityError("Sample annotation is not aligned to the array columns")

        if self.detection is not None:
            if not (self.detection.index.equals(reference.values.index)
                    and list(self.detection.columns) == reference.sample_ids):
                raise IntegrityError("Detection table labels differ from the intensity channels")

    @property
    def primary(self) -> IntensityMatrix:
        return next(iter(self.channels.values()))


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """
    Binary group-membership matrix, one row per sample and one column per level.

    The row order is the column order of the IntensityMatrix it was built for.
    """

    matrix: pd.DataFrame
    covariate: str

    def __post_init__(self):
        _check_unique(self.matrix.index, "sample")
        values = self.matrix.to_numpy()
        if not np.isin(values, (0, 1)).all():
            raise ConfigError("Design matrix must be binary")
        bad_rows = self.matrix.index[values.sum(axis=1) != 1]
        if len(bad_rows) > 0:
            raise ConfigError(f"Samples not in exactly one group: {format_ids(bad_rows)}")

    @property
    def levels(self) -> List[str]:
        return self.matrix.columns.tolist()

    @property
    def sample_ids(self) -> List[str]:
        return self.matrix.index.tolist()

    def group_of(self) -> pd.Series:
        """Level name for every sample, in design row order."""
        return self.matrix.idxmax(axis=1)


@dataclass(frozen=True, eq=False)
class ContrastSpec:
    """A named linear combination of design columns, e.g. AD - Control."""

    name: str
    weights: pd.Series
    numerator: Optional[str] = None
    denominator: Optional[str] = None

    def __post_init__(self):
        if np.allclose(self.weights.to_numpy(dtype=float), 0):
            raise ConfigError(f"Contrast '{self.name}' has all-zero weights")

    def vector(self, design: DesignMatrix) -> np.ndarray:
        """Weights laid out in design column order."""
        unknown = self.weights.index.difference(design.levels)
        if len(unknown) > 0:
            raise ConfigError(
                f"Contrast '{self.name}' refers to unknown levels: {format_ids(unknown)}"
            )
        return self.weights.reindex(design.levels, fill_value=0.0).to_numpy(dtype=float)


@dataclass(frozen=True, eq=False)
class ModelResult:
    """
    Per-row statistics of one contrast.

    Attributes:
        table: DataFrame indexed by row id with at least RESULT_COLUMNS
        contrast: Name of the tested contrast
        prior_df: Empirical-Bayes prior degrees of freedom
        prior_var: Empirical-Bayes prior variance
        df_residual: Residual degrees of freedom of the linear model
        metadata: Fit settings carried into reports, e.g. the value scale
            and the p-value adjustment method
    """

    table: pd.DataFrame
    contrast: str
    prior_df: float = np.inf
    prior_var: float = np.nan
    df_residual: float = np.nan
    metadata: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        missing = [c for c in RESULT_COLUMNS if c not in self.table.columns]
        if missing:
            raise IntegrityError(f"Model result lacks columns: {missing}")
        _check_unique(self.table.index, "result row")

    @property
    def row_ids(self) -> List[str]:
        return self.table.index.tolist()

    def __len__(self) -> int:
        return len(self.table)

    def with_annotation(self, annotation: pd.DataFrame) -> "ModelResult":
        """
        Return a result extended with annotation columns.

        The annotation must be indexed by exactly this result's row ids;
        statistic columns cannot be overwritten.
        """
        if not annotation.index.equals(self.table.index):
            raise IntegrityError("Annotation rows are not keyed by the result row ids")
        clash = [c for c in annotation.columns if c in self.table.columns]
        if clash:
            raise IntegrityError(f"Annotation would overwrite result columns: {clash}")
        table = pd.concat([self.table, annotation], axis=1)
        return replace(self, table=table)

    def subset_rows(self, keep: Sequence[str]) -> "ModelResult":
        return replace(self, table=self.table.loc[list(keep)])

    def sorted(self) -> pd.DataFrame:
        """Rows ranked by adjusted p-value, ties broken by raw p-value."""
        return self.table.sort_values(["adj.P.Val", "P.Value"], na_position="last")


@dataclass(frozen=True, eq=False)
class AnnotationTable:
    """Read-only probe annotation: gene symbol, chromosome, position, feature type."""

    table: pd.DataFrame

    def __post_init__(self):
        _check_unique(self.table.index, "annotation probe")
        missing = [c for c in ANNOTATION_COLUMNS if c not in self.table.columns]
        if missing:
            raise ParseError(f"Annotation lacks columns: {missing}")

    @property
    def probe_ids(self) -> pd.Index:
        return self.table.index

    def __len__(self) -> int:
        return len(self.table)

"""
Raw array loader for expression and methylation intensity files.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from ..containers import IntensityMatrix, RawArrayData, SampleAnnotation
from ..exceptions import ParseError, format_ids
from .base import DataLoader
from .metadata import MetadataLoader

logger = logging.getLogger(__name__)

# Affymetrix MAS5 absent / marginal / present calls as detection p-values
CALL_PVALUES = {"A": 1.0, "M": 0.05, "P": 0.0}

DEFAULT_RAW_COLUMNS = {
    "expression": {
        "probe": "ID_REF",
        "value": "VALUE",
        "detection": "Detection Pval",
        "call": "ABS_CALL",
    },
    "methylation": {
        "probe": "ID_REF",
        "methylated": "Methylated signal",
        "unmethylated": "Unmethylated signal",
        "beta": "VALUE",
        "detection": "Detection Pval",
    },
}


class RawArrayLoader(DataLoader):
    """
    Load raw array intensities and align them with sample metadata.

    Two layouts are supported:
    - "per_sample": one tab-delimited table per sample, named <sample_id><suffix>
      (GEO sample-table style: ID_REF, VALUE, Detection Pval, ...)
    - "matrix": a single probes x samples table, optionally with
      "<sample_id><detection_suffix>" detection p-value columns

    Every sample in the metadata must have raw data and vice versa.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        array_type: str = "expression",
        layout: str = "per_sample",
        raw_columns: Optional[Dict[str, str]] = None,
        suffix: str = ".txt",
        detection_suffix: str = ".Detection Pval",
        raw_scale: str = "raw"
    ):
        """
        Initialize raw array loader.

        Args:
            config: Configuration object with paths and parameters
            array_type: "expression" or "methylation"
            layout: "per_sample" or "matrix"
            raw_columns: Role -> column name mapping for the raw tables
            suffix: File name suffix of per-sample tables
            detection_suffix: Suffix of detection columns in the matrix layout
            raw_scale: Value scale of the loaded intensities
        """
        super().__init__(config)
        self.array_type = array_type
        self.layout = layout
        self.raw_columns = dict(DEFAULT_RAW_COLUMNS[array_type])
        if raw_columns:
            self.raw_columns.update(raw_columns)
        self.suffix = suffix
        self.detection_suffix = detection_suffix
        self.raw_scale = raw_scale
        self.metadata_loader = MetadataLoader(config)

    @classmethod
    def from_config(cls, config: Any) -> "RawArrayLoader":
        """Build a loader from the dataset section of a Config."""
        dataset = config.dataset
        array_type = dataset["array_type"]
        layout = dataset.get("raw_layout", "per_sample")
        default_scale = "beta" if (array_type == "methylation" and layout == "matrix") else "raw"
        return cls(
            config,
            array_type=array_type,
            layout=layout,
            raw_columns=dataset.get("raw_columns"),
            suffix=dataset.get("raw_suffix", ".txt"),
            detection_suffix=dataset.get("detection_suffix", ".Detection Pval"),
            raw_scale=dataset.get("raw_scale", default_scale),
        )

    def load(
        self,
        file_path: Union[str, Path],
        metadata_path: Optional[Union[str, Path]] = None,
        sample_col: str = "sample_id",
        column_mapping: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> RawArrayData:
        """
        Load raw intensities and metadata for one dataset.

        Args:
            file_path: Directory of per-sample tables, or the matrix file
            metadata_path: Path to the sample metadata table
            sample_col: Standardized sample id column of the metadata
            column_mapping: Optional metadata column mapping

        Returns:
            RawArrayData with channels, detection p-values and aligned samples

        Raises:
            ParseError: on malformed files or sample/file mismatches
        """
        if metadata_path is None:
            raise ParseError("A sample metadata file is required")

        samples = self.metadata_loader.load(
            metadata_path, sample_col=sample_col, column_mapping=column_mapping
        )

        path = self._resolve_path(file_path)
        if self.layout == "per_sample":
            channels, detection = self._load_per_sample(path, samples.sample_ids)
        elif self.layout == "matrix":
            channels, detection = self._load_matrix(path, samples.sample_ids)
        else:
            raise ParseError(f"Unknown raw layout: {self.layout}")

        sample_order = samples.sample_ids
        feature_map = channels.pop("_feature", None)
        matrices = {
            name: IntensityMatrix(
                values=df[sample_order],
                scale=self._channel_scale(name),
                feature_map=feature_map,
            )
            for name, df in channels.items()
        }
        if detection is not None:
            detection = detection[sample_order]

        raw = RawArrayData(
            channels=matrices,
            samples=samples.align_to(sample_order),
            detection=detection,
            array_type=self.array_type,
        )

        n_probes, n_samples = raw.primary.shape
        logger.info(
            f"Loaded {self.array_type} array: {n_probes} probes x {n_samples} samples, "
            f"channels: {list(matrices)}"
        )
        return raw

    def _channel_scale(self, channel: str) -> str:
        if channel == "beta":
            return "beta"
        return self.raw_scale if self.raw_scale != "beta" else "raw"

    def _value_roles(self, available: List[str]) -> List[str]:
        """Channel roles to read for this array type, given the available columns."""
        if self.array_type == "expression":
            return ["value"]

        channel_cols = [self.raw_columns["methylated"], self.raw_columns["unmethylated"]]
        if all(c in available for c in channel_cols):
            return ["methylated", "unmethylated"]
        return ["beta"]

    def _load_per_sample(
        self,
        raw_dir: Path,
        sample_ids: List[str]
    ):
        """Read one table per sample and assemble probes x samples frames."""
        if not raw_dir.is_dir():
            raise ParseError(f"Raw data directory not found: {raw_dir}")

        files = {
            p.name[:-len(self.suffix)]: p
            for p in sorted(raw_dir.iterdir())
            if p.is_file() and p.name.endswith(self.suffix)
        }
        if not files:
            raise ParseError(f"No raw files matching '*{self.suffix}' in {raw_dir}")

        self._check_sample_sets(sample_ids, list(files))

        probe_col = self.raw_columns["probe"]
        det_col = self.raw_columns.get("detection")
        call_col = self.raw_columns.get("call")
        feature_col = self.raw_columns.get("feature")

        columns: Dict[str, Dict[str, pd.Series]] = {}
        detection_cols: Dict[str, pd.Series] = {}
        feature_map: Optional[pd.Series] = None
        roles: Optional[List[str]] = None

        for sample_id in sample_ids:
            path = files[sample_id]
            table = self._read_table(path, id_column=probe_col)
            self._require_columns(table, [probe_col], path)
            table = table.set_index(probe_col)
            self._check_unique_probes(table.index, path)

            if roles is None:
                roles = self._value_roles(table.columns.tolist())
            value_cols = [self.raw_columns[r] for r in roles]
            self._require_columns(table, value_cols, path)

            for role, col in zip(roles, value_cols):
                channel = "intensity" if role == "value" else role
                columns.setdefault(channel, {})[sample_id] = self._to_numeric(table[col], path)

            if det_col and det_col in table.columns:
                detection_cols[sample_id] = self._to_numeric(table[det_col], path)
            elif call_col and call_col in table.columns:
                detection_cols[sample_id] = self._calls_to_pvalues(table[call_col], path)

            if feature_col and feature_col in table.columns:
                mapping = table[feature_col].astype(str)
                feature_map = mapping if feature_map is None else feature_map.combine_first(mapping)

        frames = {name: pd.concat(cols, axis=1) for name, cols in columns.items()}
        probe_index = next(iter(frames.values())).index
        frames = {name: df.reindex(probe_index) for name, df in frames.items()}

        detection = None
        if detection_cols:
            if len(detection_cols) != len(sample_ids):
                missing = [s for s in sample_ids if s not in detection_cols]
                raise ParseError(f"Detection p-values missing for samples: {format_ids(missing)}")
            detection = pd.concat(detection_cols, axis=1).reindex(probe_index)

        if feature_map is not None:
            frames["_feature"] = feature_map.reindex(probe_index)

        return frames, detection

    def _load_matrix(self, matrix_path: Path, sample_ids: List[str]):
        """Read a single probes x samples table."""
        self._validate_file(matrix_path)
        probe_col = self.raw_columns["probe"]

        logger.info(f"Loading array matrix from {matrix_path.name}...")
        table = self._read_table(matrix_path, id_column=probe_col)
        self._require_columns(table, [probe_col], matrix_path)
        table = table.set_index(probe_col)
        self._check_unique_probes(table.index, matrix_path)

        detection_map = {
            c[:-len(self.detection_suffix)]: c
            for c in table.columns if c.endswith(self.detection_suffix)
        }
        value_cols = [c for c in table.columns if c not in detection_map.values()]
        self._check_sample_sets(sample_ids, value_cols)

        values = table[sample_ids].apply(lambda col: self._to_numeric(col, matrix_path))
        channel = "beta" if self.array_type == "methylation" else "intensity"

        detection = None
        if detection_map:
            missing = [s for s in sample_ids if s not in detection_map]
            if missing:
                raise ParseError(f"Detection p-values missing for samples: {format_ids(missing)}")
            detection = table[[detection_map[s] for s in sample_ids]].apply(
                lambda col: self._to_numeric(col, matrix_path)
            )
            detection.columns = sample_ids

        return {channel: values}, detection

    @staticmethod
    def _check_sample_sets(metadata_ids: List[str], raw_ids: List[str]) -> None:
        """Every metadata sample needs raw data and every raw sample needs metadata."""
        raw_set, meta_set = set(raw_ids), set(metadata_ids)
        no_raw = [s for s in metadata_ids if s not in raw_set]
        if no_raw:
            raise ParseError(f"Samples in metadata without raw data: {format_ids(no_raw)}")

        no_meta = [s for s in raw_ids if s not in meta_set]
        if no_meta:
            raise ParseError(f"Raw data without metadata: {format_ids(no_meta)}")

    @staticmethod
    def _check_unique_probes(index: pd.Index, source: Path) -> None:
        duplicated = index[index.duplicated()].unique()
        if len(duplicated) > 0:
            raise ParseError(f"Duplicate probe ids in {source.name}: {format_ids(duplicated)}")
        if index.isna().any():
            raise ParseError(f"{source.name} has rows without a probe id")

    @staticmethod
    def _calls_to_pvalues(calls: pd.Series, source: Path) -> pd.Series:
        """Map A/M/P detection calls to detection p-values."""
        normalized = calls.astype(str).str.strip().str.upper()
        unknown = ~normalized.isin(list(CALL_PVALUES))
        if unknown.any():
            raise ParseError(
                f"Unknown detection calls in {source.name} for probes: "
                f"{format_ids(calls.index[unknown])}"
            )
        return normalized.map(CALL_PVALUES).astype(float)

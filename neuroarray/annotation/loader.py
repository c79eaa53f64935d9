"""
Probe annotation loader for platform manifests.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd

from ..containers import ANNOTATION_COLUMNS, AnnotationTable
from ..data_loaders.base import DataLoader
from ..exceptions import ParseError, format_ids

logger = logging.getLogger(__name__)

# Separators of multi-gene symbol fields ("A /// B" on Affymetrix, "A;B" on Illumina)
SYMBOL_SEPARATORS = ("///", ";")
MISSING_TOKENS = ("", "---", "NA", "nan")


class AnnotationLoader(DataLoader):
    """
    Loader for probe annotation tables.

    The platform files start with a fixed block of header comments; the
    number of lines to skip is part of the dataset configuration.
    """

    def load(
        self,
        file_path: Union[str, Path],
        skip_rows: Optional[int] = None,
        sep: str = "\t",
        column_mapping: Optional[Dict[str, str]] = None
    ) -> AnnotationTable:
        """
        Load a probe annotation table.

        Args:
            file_path: Path to annotation file
            skip_rows: Lines before the header row; None skips leading
                '#'/'!' comment lines
            sep: Field separator
            column_mapping: Standard name -> file column, for "probe_id" and
                each of gene_symbol, chromosome, position, feature_type

        Returns:
            AnnotationTable indexed by probe id

        Raises:
            ParseError: if the file is missing, lacks mapped columns, or
                repeats a probe id
        """
        path = self._resolve_path(file_path)
        self._validate_file(path)

        mapping = {"probe_id": "probe_id", **{c: c for c in ANNOTATION_COLUMNS}}
        if column_mapping:
            mapping.update(column_mapping)

        logger.info(f"Loading probe annotation from {path.name}")
        df = self._read_table(path, sep=sep, skip_rows=skip_rows, id_column=mapping["probe_id"])
        self._require_columns(df, [mapping["probe_id"]], path)

        reverse_mapping = {v: k for k, v in mapping.items()}
        df = df.rename(columns=reverse_mapping)

        # Optional annotation fields may be absent from a manifest
        for column in ANNOTATION_COLUMNS:
            if column not in df.columns:
                logger.warning(f"{path.name} has no '{mapping[column]}' column; left empty")
                df[column] = None

        df = df.dropna(subset=["probe_id"])
        df["probe_id"] = df["probe_id"].astype(str).str.strip()

        duplicated = df["probe_id"][df["probe_id"].duplicated()].unique()
        if len(duplicated) > 0:
            raise ParseError(f"Duplicate probe ids in {path.name}: {format_ids(duplicated)}")

        table = df.set_index("probe_id")[ANNOTATION_COLUMNS].copy()
        table["gene_symbol"] = table["gene_symbol"].map(first_symbol)
        table["chromosome"] = table["chromosome"].map(_clean_token)
        table["feature_type"] = table["feature_type"].map(first_symbol)
        table["position"] = pd.to_numeric(table["position"], errors="coerce").round().astype("Int64")

        logger.info(f"Loaded annotation for {len(table)} probes")
        return AnnotationTable(table=table)

    def load_from_config(self) -> AnnotationTable:
        """Load the configured dataset's annotation file."""
        if self.config is None:
            raise ValueError("load_from_config requires a Config")
        params = self.config.annotation_params
        return self.load(
            self.config.get_data_path("annotation"),
            skip_rows=params.get("skip_rows"),
            sep=params.get("sep", "\t"),
            column_mapping=params.get("columns"),
        )


def _clean_token(value) -> Optional[str]:
    if pd.isna(value):
        return None
    token = str(value).strip()
    return None if token in MISSING_TOKENS else token


def first_symbol(value) -> Optional[str]:
    """
    Reduce a multi-gene field to its first entry.

    Example:
        >>> first_symbol("DDR1 /// MIR4640")
        'DDR1'
    """
    token = _clean_token(value)
    if token is None:
        return None
    for separator in SYMBOL_SEPARATORS:
        token = token.split(separator)[0]
    return token.strip() or None

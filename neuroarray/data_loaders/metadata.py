"""
Metadata loader for sample annotations.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_object_dtype, is_string_dtype

from ..containers import SampleAnnotation
from ..exceptions import ParseError
from .base import DataLoader

logger = logging.getLogger(__name__)


class MetadataLoader(DataLoader):
    """
    Load sample metadata from a tab-delimited table with a header row.

    Handles:
    - Different column naming conventions
    - Whitespace and empty-string cleanup of categorical covariates
    - Unique sample id validation
    """

    def load(
        self,
        file_path: Union[str, Path],
        sample_col: str = "sample_id",
        column_mapping: Optional[Dict[str, str]] = None,
        sep: str = "\t",
        **kwargs
    ) -> SampleAnnotation:
        """
        Load metadata and index it by sample id.

        Args:
            file_path: Path to metadata table
            sample_col: Standardized name of the sample id column
            column_mapping: Optional mapping to standardize column names
                           e.g., {"sample_id": "geo_accession", "disease_state": "diagnosis"}
            sep: Field delimiter

        Returns:
            SampleAnnotation keyed by sample id
        """
        path = self._resolve_path(file_path)
        self._validate_file(path)

        logger.info(f"Loading metadata from {path.name}...")
        # Ids like "01" must stay text to match raw file and column names
        id_column = (column_mapping or {}).get(sample_col, sample_col)
        df = self._read_table(path, sep=sep, id_column=id_column)

        if column_mapping:
            reverse_mapping = {v: k for k, v in column_mapping.items()}
            df = df.rename(columns=reverse_mapping)

        self._require_columns(df, [sample_col], path)

        df = self._clean_values(df)
        if df[sample_col].isna().any():
            raise ParseError(f"{path.name} has rows without a sample id")

        df[sample_col] = df[sample_col].astype(str)
        df = df.set_index(sample_col)

        logger.info(f"Loaded metadata for {len(df)} samples")
        return SampleAnnotation(table=df)

    @staticmethod
    def _clean_values(df: pd.DataFrame) -> pd.DataFrame:
        """Strip string cells and treat empty strings as missing."""
        df = df.copy()
        for col in df.columns:
            if is_string_dtype(df[col]) or is_object_dtype(df[col]):
                stripped = df[col].map(lambda v: v.strip() if isinstance(v, str) else v)
                df[col] = stripped.replace("", np.nan)
        return df

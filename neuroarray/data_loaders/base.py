"""
Base data loader class providing common functionality.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import pandas as pd

from ..exceptions import ParseError, format_ids

logger = logging.getLogger(__name__)

COMMENT_PREFIXES = ("#", "!")


class DataLoader(ABC):
    """
    Abstract base class for data loaders.

    Provides common interface for loading different types of data
    (raw array tables, sample metadata, probe annotations).
    """

    def __init__(self, config: Optional[Any] = None):
        """
        Initialize data loader with configuration.

        Args:
            config: Configuration object with paths and parameters
        """
        self.config = config
        self._cache: Dict[str, pd.DataFrame] = {}

    @abstractmethod
    def load(self, file_path: Union[str, Path], **kwargs) -> Any:
        """
        Load data from file.

        Args:
            file_path: Path to data file or directory
            **kwargs: Additional loading parameters

        Returns:
            Loaded data
        """
        pass

    def _resolve_path(self, file_path: Union[str, Path]) -> Path:
        """Resolve file path relative to base directory if not absolute."""
        path = Path(file_path)
        if not path.is_absolute() and self.config is not None:
            path = self.config.base_dir / path
        return path

    def _validate_file(self, file_path: Path) -> None:
        """Validate that file exists and is readable."""
        if not file_path.exists():
            raise ParseError(f"Data file not found: {file_path}")
        if not file_path.is_file():
            raise ParseError(f"Path is not a file: {file_path}")

    def _read_table(
        self,
        file_path: Path,
        sep: str = "\t",
        skip_rows: Optional[int] = None,
        id_column: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Read a delimited table with a header row.

        Leading comment lines are skipped: either a fixed number given by
        skip_rows, or every leading line starting with '#' or '!'.
        """
        cache_key = f"{file_path}|{sep}|{skip_rows}|{id_column}"
        if cache_key in self._cache:
            logger.debug(f"Loading from cache: {file_path.name}")
            return self._cache[cache_key].copy()

        dtype = {id_column: str} if id_column else None
        try:
            if skip_rows is None:
                skip_rows = self._count_comment_lines(file_path)
            df = pd.read_csv(file_path, sep=sep, skiprows=skip_rows, dtype=dtype)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise ParseError(f"Could not parse {file_path}: {e}") from e

        df.columns = [str(c).strip() for c in df.columns]
        self._cache[cache_key] = df.copy()
        return df

    @staticmethod
    def _count_comment_lines(file_path: Path) -> int:
        """Count leading lines that start with a comment prefix."""
        n = 0
        with open(file_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.startswith(COMMENT_PREFIXES):
                    break
                n += 1
        return n

    @staticmethod
    def _require_columns(df: pd.DataFrame, columns: Sequence[str], source: Path) -> None:
        """Raise ParseError naming any required columns the table lacks."""
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise ParseError(f"{source.name} lacks required columns: {format_ids(missing)}")

    @staticmethod
    def _to_numeric(values: pd.Series, source: Path) -> pd.Series:
        """Convert a column to float, rejecting tokens that are not numbers or NA."""
        numeric = pd.to_numeric(values, errors="coerce")
        bad = numeric.isna() & values.notna()
        if bad.any():
            raise ParseError(
                f"Non-numeric values in {source.name} column '{values.name}' "
                f"for rows: {format_ids(values.index[bad])}"
            )
        return numeric.astype(float)

    def clear_cache(self) -> None:
        """Clear the data cache."""
        self._cache.clear()
        logger.debug("Data cache cleared")

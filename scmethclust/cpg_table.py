"""
CpG methylation call tables.

A CpG table is a pandas DataFrame with one row per CpG site and the columns
``chromosome``, ``position`` and ``methylation_percent``. Tables are validated
once when they enter the package so that downstream joins can rely on named,
typed columns.
"""

import logging
from typing import Any, Iterable, Optional, Union

import numpy as np
import pandas as pd

from .errors import MalformedTableError

logger = logging.getLogger(__name__)

CHROMOSOME = "chromosome"
POSITION = "position"
METHYLATION = "methylation_percent"
CPG_COLUMNS = [CHROMOSOME, POSITION, METHYLATION]

# Binary methylation calls kept in digital mode
DIGITAL_VALUES = (0.0, 100.0)

TableLike = Union[pd.DataFrame, Iterable[Any]]


def validate_cpg_table(table: TableLike, name: Optional[str] = None) -> pd.DataFrame:
    """
    Validate a CpG table and return a normalized copy.

    Accepts a DataFrame with the required named columns (extra columns are
    dropped), or an iterable of (chromosome, position, methylation_percent)
    tuples or dicts with those keys.

    Args:
        table: Table to validate
        name: Cell identifier, used in error messages

    Returns:
        New DataFrame with exactly CPG_COLUMNS, chromosome as str, position as
        int64 and methylation_percent as float64

    Raises:
        MalformedTableError: If columns are missing, values are missing or out
            of range, or a site appears twice
    """
    label = f"CpG table '{name}'" if name is not None else "CpG table"

    if not isinstance(table, pd.DataFrame):
        try:
            rows = list(table)
        except TypeError:
            raise MalformedTableError(f"{label} is not a table: {type(table).__name__}")
        try:
            if rows and isinstance(rows[0], dict):
                table = pd.DataFrame(rows)
            else:
                table = pd.DataFrame(rows, columns=CPG_COLUMNS)
        except ValueError as e:
            raise MalformedTableError(f"{label} rows do not match {CPG_COLUMNS}: {e}") from e

    missing = [col for col in CPG_COLUMNS if col not in table.columns]
    if missing:
        raise MalformedTableError(f"{label} is missing required columns: {missing}")

    df = table[CPG_COLUMNS].copy()

    if df.isna().any().any():
        bad_cols = [col for col in CPG_COLUMNS if df[col].isna().any()]
        raise MalformedTableError(f"{label} has missing values in columns {bad_cols}")

    positions = pd.to_numeric(df[POSITION], errors="coerce")
    if positions.isna().any() or not np.all(np.mod(positions, 1) == 0):
        raise MalformedTableError(f"{label} has non-integer positions")
    if (positions < 0).any():
        raise MalformedTableError(f"{label} has negative positions")

    percents = pd.to_numeric(df[METHYLATION], errors="coerce")
    if percents.isna().any():
        raise MalformedTableError(f"{label} has non-numeric methylation values")
    out_of_range = (percents < 0) | (percents > 100)
    if out_of_range.any():
        raise MalformedTableError(
            f"{label} has {int(out_of_range.sum())} methylation values outside [0, 100]"
        )

    df[CHROMOSOME] = df[CHROMOSOME].astype(str)
    df[POSITION] = positions.astype(np.int64)
    df[METHYLATION] = percents.astype(np.float64)

    duplicated = df.duplicated(subset=[CHROMOSOME, POSITION])
    if duplicated.any():
        first = df.loc[duplicated, [CHROMOSOME, POSITION]].iloc[0]
        raise MalformedTableError(
            f"{label} has {int(duplicated.sum())} duplicated sites "
            f"(first: {first[CHROMOSOME]}:{first[POSITION]})"
        )

    return df.reset_index(drop=True)


def filter_digital(table: pd.DataFrame) -> pd.DataFrame:
    """Keep only binary methylation calls (0 or 100 percent)."""
    return table[table[METHYLATION].isin(DIGITAL_VALUES)]


def empty_cpg_table() -> pd.DataFrame:
    """Empty table with the CpG schema."""
    return pd.DataFrame({
        CHROMOSOME: pd.Series(dtype=str),
        POSITION: pd.Series(dtype=np.int64),
        METHYLATION: pd.Series(dtype=np.float64),
    })

"""
Dissimilarity matrix assembly.

Converts the long-form pairwise dissimilarity table into a square, symmetric
pandas DataFrame indexed by cell name on both axes.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .pairwise import DissimilarityRecord, records_to_frame

logger = logging.getLogger(__name__)

MEASURES = (
    "shared_site_count",
    "pearson_correlation",
    "manhattan_distance",
    "manhattan_distance_scaled",
)
DEFAULT_MEASURE = "manhattan_distance_scaled"


def assemble(records: Union[Iterable[DissimilarityRecord], pd.DataFrame],
             measure: str = DEFAULT_MEASURE,
             diagonal_value: Optional[float] = np.nan,
             subset: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """
    Build a square dissimilarity matrix from pairwise records.

    Args:
        records: Dissimilarity records, or their long-form DataFrame
        measure: Record field to use as the matrix value
        diagonal_value: Value placed on the diagonal (default NaN, None means NaN)
        subset: Optional cell names; records touching any other cell are dropped

    Returns:
        Square DataFrame with rows and columns both equal to the sorted cell
        names. Pairs without a record are NaN.

    Raises:
        ConfigurationError: If measure is unknown
        ValueError: If a record pairs a cell with itself or a pair has
            conflicting values
    """
    if measure not in MEASURES:
        raise ConfigurationError(f"Unknown measure {measure!r}; choose from {MEASURES}")
    if diagonal_value is None:
        diagonal_value = np.nan

    df = records_to_frame(records)

    if subset is not None:
        keep = set(subset)
        before = len(df)
        df = df[df["cell_a"].isin(keep) & df["cell_b"].isin(keep)]
        logger.debug(f"Sample subset kept {len(df)} of {before} pairwise records")

    if df.empty:
        logger.warning("No pairwise records to assemble; returning an empty matrix")
        return pd.DataFrame(index=pd.Index([], dtype=object),
                            columns=pd.Index([], dtype=object), dtype=np.float64)

    self_pairs = df["cell_a"] == df["cell_b"]
    if self_pairs.any():
        raise ValueError(f"Records compare a cell with itself: {sorted(set(df.loc[self_pairs, 'cell_a']))}")

    values = df[measure].astype(np.float64).to_numpy().copy()
    # Pairs without shared sites have no dissimilarity under any measure
    no_overlap = df["shared_site_count"].to_numpy() == 0
    if no_overlap.any():
        values[no_overlap] = np.nan
        logger.debug(f"{int(no_overlap.sum())} pairs share no CpG sites and are left missing")
    forward = pd.DataFrame({"x": df["cell_a"].to_numpy(), "y": df["cell_b"].to_numpy(), "value": values})
    mirror = pd.DataFrame({"x": df["cell_b"].to_numpy(), "y": df["cell_a"].to_numpy(), "value": values})

    names = sorted(set(forward["x"]) | set(forward["y"]))
    diagonal = pd.DataFrame({"x": names, "y": names, "value": float(diagonal_value)})

    long_form = pd.concat([diagonal, forward, mirror], ignore_index=True).drop_duplicates()

    conflicts = long_form.duplicated(subset=["x", "y"], keep=False)
    if conflicts.any():
        pairs = sorted({tuple(sorted(p)) for p in long_form.loc[conflicts, ["x", "y"]].itertuples(index=False)})
        raise ValueError(f"Conflicting {measure} values for pairs: {pairs[:5]}")

    matrix = long_form.pivot(index="x", columns="y", values="value")
    matrix = matrix.reindex(index=names, columns=names).astype(np.float64)
    matrix.index.name = None
    matrix.columns.name = None

    missing = len(missing_pairs(matrix))
    if missing:
        logger.info(f"Dissimilarity matrix for {len(names)} cells has {missing} missing pairs")
    return matrix


def subset_matrix(matrix: pd.DataFrame, names: Sequence[str]) -> pd.DataFrame:
    """
    New matrix restricted to `names`, rows and columns in the order given.

    Raises:
        KeyError: If a name is not in the matrix
    """
    unknown = [name for name in names if name not in matrix.index]
    if unknown:
        raise KeyError(f"Cells not in matrix: {unknown}")
    return matrix.loc[list(names), list(names)].copy()


def missing_pairs(matrix: pd.DataFrame) -> List[Tuple[str, str]]:
    """
    Off-diagonal pairs without a value, as (row, column) above the diagonal.

    A pair counts as missing if either of its two cells is NaN.
    """
    values = matrix.to_numpy(dtype=np.float64)
    upper = np.triu(np.ones_like(values, dtype=bool), k=1)
    nan = np.isnan(values)
    rows, cols = np.where((nan | nan.T) & upper)
    return [(matrix.index[i], matrix.columns[j]) for i, j in zip(rows, cols)]


def is_symmetric(matrix: pd.DataFrame) -> bool:
    """True if the matrix is square, labelled consistently and symmetric (NaN == NaN)."""
    if matrix.shape[0] != matrix.shape[1] or list(matrix.index) != list(matrix.columns):
        return False
    values = matrix.to_numpy(dtype=np.float64)
    return bool(np.allclose(values, values.T, equal_nan=True))

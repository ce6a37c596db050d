"""
Hierarchical clustering of cells from a dissimilarity matrix.

Linkage and the flat cut are delegated to scipy.cluster.hierarchy; this module
checks that the matrix is complete and symmetric before handing it over, and
maps the flat labels back to cell names.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform

from .errors import ConfigurationError, IncompleteMatrixError
from .matrix import missing_pairs

logger = logging.getLogger(__name__)

# Linkage methods that are valid on arbitrary precomputed dissimilarities
LINKAGE_METHODS = ("single", "complete", "average", "weighted")
DEFAULT_LINKAGE_METHOD = "average"


@dataclass
class ClusterResult:
    """Dendrogram and flat cluster assignment for a set of cells."""
    linkage: np.ndarray
    cells: List[str]
    assignment: Dict[str, int]
    k: int
    method: str

    @property
    def n_clusters(self) -> int:
        return len(set(self.assignment.values()))

    def members(self, label: int) -> List[str]:
        """Cells assigned to `label`, in matrix order."""
        return [cell for cell in self.cells if self.assignment[cell] == label]

    def clusters(self) -> Dict[int, List[str]]:
        """Mapping of label to member cells, ordered by label."""
        return {label: self.members(label) for label in sorted(set(self.assignment.values()))}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "cell": self.cells,
            "cluster": [self.assignment[cell] for cell in self.cells],
        })


def cluster(matrix: pd.DataFrame, k: int,
            method: str = DEFAULT_LINKAGE_METHOD) -> ClusterResult:
    """
    Agglomerative clustering of cells, cut into at most k flat clusters.

    Args:
        matrix: Square dissimilarity matrix labelled by cell on both axes.
            The diagonal is ignored.
        k: Number of clusters, 1 <= k <= number of cells
        method: scipy linkage method (single, complete, average or weighted)

    Returns:
        ClusterResult with the scipy linkage matrix and labels in 1..k

    Raises:
        ConfigurationError: If k or method is invalid, or fewer than 2 cells
        IncompleteMatrixError: If any off-diagonal entry is missing
        ValueError: If the matrix is not square, labelled consistently or symmetric
    """
    if method not in LINKAGE_METHODS:
        raise ConfigurationError(f"Unknown linkage method {method!r}; choose from {LINKAGE_METHODS}")

    n = matrix.shape[0]
    if matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"Dissimilarity matrix must be square, got shape {matrix.shape}")
    if list(matrix.index) != list(matrix.columns):
        raise ValueError("Dissimilarity matrix rows and columns must have the same labels in the same order")
    if n < 2:
        raise ConfigurationError(f"Clustering requires at least 2 cells, got {n}")
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or not 1 <= k <= n:
        raise ConfigurationError(f"k must be an integer between 1 and {n}, got {k!r}")

    missing = missing_pairs(matrix)
    if missing:
        raise IncompleteMatrixError(
            f"Dissimilarity matrix has {len(missing)} missing pairs, e.g. {missing[:5]}"
        )

    distances = matrix.to_numpy(dtype=np.float64).copy()
    np.fill_diagonal(distances, 0.0)
    if not np.allclose(distances, distances.T):
        raise ValueError("Dissimilarity matrix is not symmetric")
    if (distances < 0).any():
        logger.warning("Dissimilarity matrix has negative values; linkage treats them as distances")

    condensed = squareform(distances, checks=False)
    linkage_matrix = linkage(condensed, method=method)
    labels = fcluster(linkage_matrix, t=int(k), criterion="maxclust")

    cells = [str(cell) for cell in matrix.index]
    result = ClusterResult(
        linkage=linkage_matrix,
        cells=cells,
        assignment={cell: int(label) for cell, label in zip(cells, labels)},
        k=int(k),
        method=method,
    )

    sizes = [len(members) for members in result.clusters().values()]
    logger.info(f"Clustered {n} cells into {result.n_clusters} clusters {sizes} ({method} linkage)")
    if result.n_clusters < k:
        logger.warning(f"Requested {k} clusters but tied merge heights produced {result.n_clusters}")
    return result

"""
scMethClust: pairwise dissimilarity and hierarchical clustering of single-cell
CpG methylation profiles.

Compares every pair of cells at their shared CpG sites in parallel, assembles
the scores into a symmetric dissimilarity matrix and cuts a hierarchical
clustering of the cells into k groups.
"""

__version__ = "0.1.0"

from .batching import partition
from .cpg_table import validate_cpg_table
from .errors import (
    ScMethClustError,
    ConfigurationError,
    MalformedTableError,
    IncompleteMatrixError,
    PairComparisonError
)
from .pairwise import (
    DissimilarityRecord,
    PairError,
    PairwiseComparison,
    PairwiseResult,
    compare,
    difference_from_joined,
    join_pair,
    records_to_frame,
    run_all
)
from .matrix import assemble, missing_pairs, subset_matrix
from .clustering import ClusterResult, cluster
from .utils import (
    load_cpg_table,
    load_cpg_tables,
    save_clusters_to_file,
    format_cluster_output
)

__all__ = [
    "partition",
    "validate_cpg_table",
    "ScMethClustError",
    "ConfigurationError",
    "MalformedTableError",
    "IncompleteMatrixError",
    "PairComparisonError",
    "DissimilarityRecord",
    "PairError",
    "PairwiseComparison",
    "PairwiseResult",
    "compare",
    "difference_from_joined",
    "join_pair",
    "records_to_frame",
    "run_all",
    "assemble",
    "missing_pairs",
    "subset_matrix",
    "ClusterResult",
    "cluster",
    "load_cpg_table",
    "load_cpg_tables",
    "save_clusters_to_file",
    "format_cluster_output"
]

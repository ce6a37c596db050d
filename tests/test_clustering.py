"""
Tests for hierarchical clustering of the dissimilarity matrix.
"""

import numpy as np
import pandas as pd
import pytest

from scmethclust.clustering import ClusterResult, cluster
from scmethclust.errors import ConfigurationError, IncompleteMatrixError
from scmethclust.matrix import assemble
from scmethclust.pairwise import DissimilarityRecord


def matrix_from_array(values, names=None, diagonal=np.nan):
    values = np.array(values, dtype=float)
    names = names or [f"cell{i}" for i in range(len(values))]
    matrix = pd.DataFrame(values, index=names, columns=names)
    for name in names:
        matrix.loc[name, name] = diagonal
    return matrix


class TestCluster:
    """Test suite for cluster()."""

    def setup_method(self):
        """Two well separated groups: cells 0-2 and cells 3-4."""
        self.matrix = matrix_from_array([
            [0.0, 1.0, 2.0, 40.0, 41.0],
            [1.0, 0.0, 1.5, 42.0, 43.0],
            [2.0, 1.5, 0.0, 44.0, 45.0],
            [40.0, 42.0, 44.0, 0.0, 3.0],
            [41.0, 43.0, 45.0, 3.0, 0.0],
        ])

    def test_two_clear_groups(self):
        """Test that well separated groups are recovered."""
        result = cluster(self.matrix, 2)

        assert isinstance(result, ClusterResult)
        assert result.n_clusters == 2
        groups = {frozenset(members) for members in result.clusters().values()}
        assert groups == {frozenset({"cell0", "cell1", "cell2"}), frozenset({"cell3", "cell4"})}
        assert set(result.assignment.values()) <= {1, 2}

    def test_k_one_single_cluster(self):
        """Test that k=1 puts every cell in cluster 1."""
        result = cluster(self.matrix, 1)
        assert set(result.assignment.values()) == {1}

    def test_k_equals_cells_gives_singletons(self):
        """Test that k=n gives each cell its own cluster."""
        result = cluster(self.matrix, 5)
        assert sorted(result.assignment.values()) == [1, 2, 3, 4, 5]

    def test_every_cell_assigned(self):
        """Test that the assignment covers every row label."""
        result = cluster(self.matrix, 3)
        assert set(result.assignment) == set(self.matrix.index)
        assert all(1 <= label <= 3 for label in result.assignment.values())

    def test_linkage_shape(self):
        """Test that the dendrogram is a scipy linkage matrix."""
        result = cluster(self.matrix, 2)
        assert result.linkage.shape == (4, 4)

    def test_diagonal_ignored(self):
        """Test that the diagonal value does not affect clustering."""
        with_nan = cluster(self.matrix, 2)
        values = self.matrix.copy()
        for name in values.index:
            values.loc[name, name] = 999.0
        with_value = cluster(values, 2)
        assert with_nan.assignment == with_value.assignment

    @pytest.mark.parametrize("method", ["single", "complete", "average", "weighted"])
    def test_linkage_methods(self, method):
        result = cluster(self.matrix, 2, method=method)
        assert result.method == method
        assert result.n_clusters == 2

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError):
            cluster(self.matrix, 2, method="ward")

    @pytest.mark.parametrize("k", [0, -1, 6, 2.0, True])
    def test_invalid_k(self, k):
        """Test that k outside 1..n fails."""
        with pytest.raises(ConfigurationError):
            cluster(self.matrix, k)

    def test_numpy_integer_k(self):
        result = cluster(self.matrix, np.int64(2))
        assert result.k == 2

    def test_missing_entry_fails(self):
        """Test that a missing off-diagonal entry is rejected."""
        matrix = self.matrix.copy()
        matrix.loc["cell0", "cell3"] = np.nan
        matrix.loc["cell3", "cell0"] = np.nan
        with pytest.raises(IncompleteMatrixError) as exc_info:
            cluster(matrix, 2)
        assert "cell0" in str(exc_info.value)

    def test_missing_lower_entry_fails(self):
        """Test that a NaN only below the diagonal counts as missing."""
        matrix = self.matrix.copy()
        matrix.loc["cell4", "cell1"] = np.nan
        with pytest.raises(IncompleteMatrixError) as exc_info:
            cluster(matrix, 2)
        assert "cell1" in str(exc_info.value)

    def test_no_overlap_pair_fails_for_raw_distance(self):
        """Test that a zero-overlap pair stays missing under manhattan_distance."""
        records = [
            DissimilarityRecord("a", "b", 0, None, 0.0, None),
            DissimilarityRecord("a", "c", 10, 0.1, 100.0, 10.0),
            DissimilarityRecord("b", "c", 10, 0.2, 120.0, 12.0),
        ]
        with pytest.raises(IncompleteMatrixError):
            cluster(assemble(records, measure="manhattan_distance"), 2)

    def test_asymmetric_fails(self):
        matrix = self.matrix.copy()
        matrix.loc["cell0", "cell1"] = 5.0
        with pytest.raises(ValueError):
            cluster(matrix, 2)

    def test_non_square_fails(self):
        with pytest.raises(ValueError):
            cluster(self.matrix.iloc[:, :4], 2)

    def test_single_cell_fails(self):
        with pytest.raises(ConfigurationError):
            cluster(matrix_from_array([[0.0]]), 1)

    def test_to_frame(self):
        result = cluster(self.matrix, 2)
        frame = result.to_frame()
        assert list(frame.columns) == ["cell", "cluster"]
        assert frame["cell"].tolist() == list(self.matrix.index)

    def test_from_assembled_records(self):
        """Test clustering a matrix built by assemble()."""
        records = [
            DissimilarityRecord("a", "b", 10, 0.9, 10.0, 1.0),
            DissimilarityRecord("a", "c", 10, -0.9, 900.0, 90.0),
            DissimilarityRecord("b", "c", 10, -0.8, 880.0, 88.0),
        ]
        result = cluster(assemble(records), 2)
        assert result.assignment["a"] == result.assignment["b"]
        assert result.assignment["a"] != result.assignment["c"]

"""
Tests for the command-line interface.
"""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for testing
import numpy as np
import pandas as pd
import pytest

from scmethclust.cli import main as cli_main, parse_diagonal, setup_logging

# Two groups of cells with opposite methylation over six shared sites
CELL_PROFILES = {
    "A1": [0, 0, 0, 100, 100, 100],
    "A2": [0, 0, 0, 100, 100, 0],
    "B1": [100, 100, 100, 0, 0, 0],
    "B2": [100, 100, 100, 0, 0, 100],
}


class TestMainCLI:
    """Test suite for the scMethClust CLI."""

    def _create_coverage_files(self, tmpdir):
        """Helper to write one Bismark-style coverage file per cell."""
        paths = []
        for name, percents in CELL_PROFILES.items():
            path = tmpdir / f"{name}.cov"
            with open(path, 'w') as f:
                for i, pct in enumerate(percents, start=1):
                    methylated = 1 if pct == 100 else 0
                    f.write(f"chr1\t{i * 10}\t{i * 10}\t{pct}\t{methylated}\t{1 - methylated}\n")
            paths.append(str(path))
        return paths

    def test_setup_logging_verbose(self):
        """Test logging setup with verbose mode."""
        with patch('scmethclust.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=True)
            mock_config.assert_called_once()
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 10  # logging.DEBUG

    def test_setup_logging_normal(self):
        """Test logging setup with normal mode."""
        with patch('scmethclust.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=False)
            mock_config.assert_called_once()
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 20  # logging.INFO

    def test_parse_diagonal(self):
        assert parse_diagonal("0") == 0.0
        assert np.isnan(parse_diagonal("NA"))

    @patch('sys.argv', ['scmethclust', '--help'])
    def test_cli_help_message(self):
        """Test that CLI shows help message."""
        with pytest.raises(SystemExit) as exc_info:
            cli_main()
        assert exc_info.value.code == 0

    @patch('sys.argv', ['scmethclust', 'nonexistent.cov', '-k', '2'])
    def test_cli_missing_input_file(self):
        """Test CLI behavior with missing input file."""
        with pytest.raises(SystemExit) as exc_info:
            cli_main()
        assert exc_info.value.code == 1

    def test_cli_requires_cluster_count(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = self._create_coverage_files(Path(tmpdir))
            with patch('sys.argv', ['scmethclust'] + paths):
                with pytest.raises(SystemExit) as exc_info:
                    cli_main()
            assert exc_info.value.code == 2

    def test_cli_single_worker_rejected(self):
        """Test that one worker is a configuration error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            paths = self._create_coverage_files(tmpdir)
            test_args = ['scmethclust'] + paths + ['-k', '2', '-t', '1', '--no-progress',
                                                   '-o', str(tmpdir / 'out')]
            with patch('sys.argv', test_args):
                with pytest.raises(SystemExit) as exc_info:
                    cli_main()
            assert exc_info.value.code == 1

    def test_cli_full_pipeline(self):
        """Test the pairwise, matrix and cluster outputs of a full run."""
        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            paths = self._create_coverage_files(tmpdir)
            prefix = tmpdir / 'results' / 'run'
            test_args = ['scmethclust'] + paths + ['-k', '2', '-t', '2', '--no-progress',
                                                   '-o', str(prefix),
                                                   '--export-metrics', str(tmpdir / 'metrics.json')]

            with patch('sys.argv', test_args):
                cli_main()

            pairwise = pd.read_csv(f"{prefix}.pairwise.tsv", sep="\t")
            matrix = pd.read_csv(f"{prefix}.matrix.tsv", sep="\t", index_col=0)
            clusters = pd.read_csv(f"{prefix}.clusters.tsv", sep="\t")
            with open(tmpdir / 'metrics.json') as f:
                metrics = json.load(f)

        assert len(pairwise) == 6
        assert list(pairwise[["cell_a", "cell_b"]].itertuples(index=False, name=None))[:3] == [
            ("A1", "A2"), ("A1", "B1"), ("A1", "B2")
        ]
        assert (pairwise["shared_site_count"] == 6).all()

        assert list(matrix.index) == ["A1", "A2", "B1", "B2"]
        assert matrix.loc["A1", "B1"] == 100.0
        assert matrix.loc["B1", "A1"] == 100.0

        labels = dict(zip(clusters["cell"], clusters["cluster"]))
        assert labels["A1"] == labels["A2"]
        assert labels["B1"] == labels["B2"]
        assert labels["A1"] != labels["B1"]

        assert metrics["n_pairs"] == 6
        assert metrics["n_pair_errors"] == 0
        assert metrics["n_clusters"] == 2

    def test_cli_text_output_and_subset(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            paths = self._create_coverage_files(tmpdir)
            subset = tmpdir / 'keep.txt'
            subset.write_text("A1\nB1\nB2\n")
            prefix = tmpdir / 'run'
            test_args = ['scmethclust'] + paths + ['-k', '2', '-t', '3', '--no-progress',
                                                   '-o', str(prefix), '--format', 'text',
                                                   '--subset', str(subset), '--diagonal', '0']

            with patch('sys.argv', test_args):
                cli_main()

            matrix = pd.read_csv(f"{prefix}.matrix.tsv", sep="\t", index_col=0)
            text = Path(f"{prefix}.clusters.txt").read_text()

        assert list(matrix.index) == ["A1", "B1", "B2"]
        assert matrix.loc["A1", "A1"] == 0.0
        assert "Cluster 1" in text
        assert "  - A1" in text
        assert "A2" not in text

    def test_cli_plots(self):
        """Test that --plot writes the pairwise, separation and dendrogram figures."""
        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            paths = self._create_coverage_files(tmpdir)
            prefix = tmpdir / 'run'
            test_args = ['scmethclust'] + paths + ['-k', '2', '-t', '2', '--no-progress',
                                                   '-o', str(prefix), '--plot']

            with patch('sys.argv', test_args):
                cli_main()

            assert Path(f"{prefix}.pairwise_histogram.png").exists()
            assert Path(f"{prefix}.histogram.png").exists()
            assert Path(f"{prefix}.dendrogram.png").exists()

"""
Utility functions for scMethClust.

This module provides helpers for reading per-cell methylation call files and
writing pairwise, matrix and clustering results.
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Union

import pandas as pd
from tqdm import tqdm

from .clustering import ClusterResult
from .cpg_table import CHROMOSOME, METHYLATION, POSITION, validate_cpg_table
from .errors import ConfigurationError, MalformedTableError
from .pairwise import DissimilarityRecord, records_to_frame

# Suffixes stripped from file names to derive cell names
CELL_NAME_SUFFIXES = (".gz", ".cov", ".bismark", ".bed", ".txt", ".tsv")

# Column positions in Bismark coverage output: chrom, start, end, percent, count_m, count_u
COVERAGE_COLUMNS = {0: CHROMOSOME, 1: POSITION, 3: METHYLATION}


def cell_name_from_path(path: Union[str, Path]) -> str:
    """Derive a cell name from a methylation call file name."""
    name = Path(path).name
    stripped = True
    while stripped:
        stripped = False
        for suffix in CELL_NAME_SUFFIXES:
            if name.lower().endswith(suffix) and len(name) > len(suffix):
                name = name[:-len(suffix)]
                stripped = True
    return name


def load_cpg_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a CpG table from a tab-separated methylation call file.

    The file has no header; the first, second and fourth columns hold the
    chromosome, position and methylation percentage (Bismark coverage layout).
    Gzipped files are read transparently.

    Args:
        path: Path to the methylation call file

    Returns:
        Validated CpG table

    Raises:
        MalformedTableError: If the file lacks the required columns or values
    """
    try:
        raw = pd.read_csv(path, sep="\t", header=None, comment="#",
                          usecols=list(COVERAGE_COLUMNS), dtype={0: str},
                          compression="infer")
    except pd.errors.EmptyDataError:
        raw = pd.DataFrame(columns=list(COVERAGE_COLUMNS))
    except ValueError as e:
        raise MalformedTableError(f"Could not read CpG calls from {path}: {e}") from e

    table = raw.rename(columns=COVERAGE_COLUMNS)
    return validate_cpg_table(table, name=str(path))


def load_cpg_tables(paths: Iterable[Union[str, Path]],
                    show_progress: bool = True) -> Dict[str, pd.DataFrame]:
    """
    Load CpG tables for several cells, keyed by cell name in input order.

    Raises:
        ConfigurationError: If two files map to the same cell name
    """
    paths = [Path(p) for p in paths]
    tables = OrderedDict()
    for path in tqdm(paths, desc="Loading CpG tables", unit=" cells", disable=not show_progress):
        name = cell_name_from_path(path)
        if name in tables:
            raise ConfigurationError(f"Duplicate cell name '{name}' derived from {path}")
        tables[name] = load_cpg_table(path)
        logging.debug(f"Loaded {len(tables[name])} CpG sites for {name}")

    logging.info(f"Loaded CpG tables for {len(tables)} cells")
    return tables


def load_subset(path: Union[str, Path]) -> List[str]:
    """Read cell names, one per line; blank lines and '#' comments are skipped."""
    names = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                names.append(line)
    return names


def save_records(records: Union[Iterable[DissimilarityRecord], pd.DataFrame],
                 output_path: Union[str, Path]):
    """Write pairwise dissimilarity records as TSV (undefined values are 'NA')."""
    records_to_frame(records).to_csv(output_path, sep="\t", index=False, na_rep="NA")


def save_matrix(matrix: pd.DataFrame, output_path: Union[str, Path]):
    """Write a dissimilarity matrix as TSV with cell names on both axes."""
    matrix.to_csv(output_path, sep="\t", na_rep="NA")


def format_cluster_output(result: ClusterResult) -> str:
    """
    Format clustering results for output.

    Args:
        result: Clustering result

    Returns:
        Formatted string representation of clusters
    """
    output_lines = []
    for label, members in result.clusters().items():
        output_lines.append(f"Cluster {label} ({len(members)} cells):")
        for member in members:
            output_lines.append(f"  - {member}")
    return "\n".join(output_lines)


def save_clusters_to_file(result: ClusterResult,
                          output_path: Union[str, Path],
                          format: str = "tsv"):
    """
    Save clustering results to a file.

    Args:
        result: Clustering result
        output_path: Path to output file
        format: Output format ("tsv" or "text")
    """
    if format == "tsv":
        # cell<tab>cluster, in matrix order
        result.to_frame().to_csv(output_path, sep="\t", index=False)
    elif format == "text":
        with open(output_path, 'w') as f:
            f.write(format_cluster_output(result))
            f.write("\n")
    else:
        raise ValueError(f"Unknown output format: {format}")

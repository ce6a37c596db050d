"""
Analysis of dissimilarity distributions and cluster separation.

This module summarizes how the pairwise dissimilarities split into
intra-cluster and inter-cluster values once cells have been clustered, and
draws histograms and dendrograms for inspection.
"""

import logging
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import dendrogram

from .clustering import ClusterResult


def calculate_percentiles(values: np.ndarray,
                          percentiles: List[float] = [5, 10, 25, 50, 75, 90, 95, 100]) -> Dict[str, float]:
    """
    Calculate key percentile values for a set of dissimilarities.

    Args:
        values: Array of dissimilarity values (NaN entries are ignored)
        percentiles: List of percentiles to calculate

    Returns:
        Dictionary mapping percentile names to values
    """
    values = np.asarray(values, dtype=np.float64)
    values = values[~np.isnan(values)]
    if len(values) == 0:
        return {f"P{p}": np.nan for p in percentiles}

    percentile_values = np.percentile(values, percentiles)
    return {f"P{int(p)}": float(val) for p, val in zip(percentiles, percentile_values)}


def calculate_cluster_separation(matrix: pd.DataFrame,
                                 result: ClusterResult) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split the upper-triangle dissimilarities into intra- and inter-cluster values.

    Args:
        matrix: Dissimilarity matrix used for clustering
        result: Clustering result over the same cells

    Returns:
        Tuple of (intra_values, inter_values)
    """
    cells = result.cells
    values = matrix.loc[cells, cells].to_numpy(dtype=np.float64)
    labels = np.array([result.assignment[cell] for cell in cells])

    i_idx, j_idx = np.triu_indices(len(cells), k=1)
    pair_values = values[i_idx, j_idx]
    same_cluster = labels[i_idx] == labels[j_idx]

    return pair_values[same_cluster], pair_values[~same_cluster]


def summarize_clustering(matrix: pd.DataFrame, result: ClusterResult) -> Dict:
    """
    Summary statistics for a clustering, suitable for JSON export.

    Returns:
        Dict with cluster sizes and intra/inter-cluster percentiles
    """
    intra, inter = calculate_cluster_separation(matrix, result)
    clusters = result.clusters()

    return {
        "n_cells": len(result.cells),
        "k": result.k,
        "n_clusters": result.n_clusters,
        "linkage_method": result.method,
        "cluster_sizes": {str(label): len(members) for label, members in clusters.items()},
        "n_intra": int(len(intra)),
        "n_inter": int(len(inter)),
        "intra_percentiles": calculate_percentiles(intra),
        "inter_percentiles": calculate_percentiles(inter),
    }


def create_histogram(values: np.ndarray,
                     title: str,
                     xlabel: str = "Dissimilarity",
                     bins: int = 50,
                     save_path: Optional[str] = None) -> plt.Figure:
    """
    Histogram of pairwise dissimilarities with quartile markers.

    NaN entries (pairs without shared sites) are left out of the bars and
    reported as a count in the corner box.

    Args:
        values: Array of dissimilarity values
        title: Title for the histogram
        xlabel: Label for x-axis
        bins: Number of histogram bins
        save_path: Optional path to save the figure

    Returns:
        matplotlib Figure object
    """
    values = np.asarray(values, dtype=np.float64)
    n_missing = int(np.isnan(values).sum())
    values = values[~np.isnan(values)]
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.set_title(title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel("Cell pairs")

    if len(values) == 0:
        ax.text(0.5, 0.5, f'No dissimilarities available ({n_missing} missing pairs)',
                ha='center', va='center', transform=ax.transAxes)
    else:
        ax.hist(values, bins=bins, alpha=0.7, color='steelblue', edgecolor='black')
        quartiles = calculate_percentiles(values, percentiles=[25, 50, 75])
        for (name, val), style in zip(quartiles.items(), [':', '--', ':']):
            ax.axvline(val, color='darkred', linestyle=style, label=f'{name}: {val:.3g}')
        ax.legend()
        ax.grid(True, alpha=0.3)
        ax.text(0.02, 0.98, f"pairs={len(values):,}\nmissing={n_missing:,}",
                transform=ax.transAxes, verticalalignment='top',
                bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.8))

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
        logging.info(f"Histogram saved to {save_path}")

    return fig


def pairwise_values(matrix: pd.DataFrame) -> np.ndarray:
    """Upper-triangle dissimilarities of a square matrix, one per cell pair."""
    values = matrix.to_numpy(dtype=np.float64)
    i_idx, j_idx = np.triu_indices(len(values), k=1)
    return values[i_idx, j_idx]


def create_combined_histogram(intra_values: np.ndarray,
                              inter_values: np.ndarray,
                              title: str = "Intra- vs inter-cluster dissimilarity",
                              bins: int = 50,
                              save_path: Optional[str] = None) -> plt.Figure:
    """Overlay histograms of intra- and inter-cluster dissimilarities."""
    fig, ax = plt.subplots(figsize=(12, 8))

    all_values = np.concatenate([intra_values, inter_values])
    all_values = all_values[~np.isnan(all_values)]
    if len(all_values) == 0:
        ax.text(0.5, 0.5, 'No dissimilarities available',
                ha='center', va='center', transform=ax.transAxes)
        ax.set_title(title)
        return fig

    bin_range = (all_values.min(), all_values.max())

    if len(intra_values) > 0:
        ax.hist(intra_values, bins=bins, alpha=0.6, label=f'Intra-cluster (n={len(intra_values):,})',
                color='blue', range=bin_range)
    if len(inter_values) > 0:
        ax.hist(inter_values, bins=bins, alpha=0.6, label=f'Inter-cluster (n={len(inter_values):,})',
                color='red', range=bin_range)

    ax.set_title(title)
    ax.set_xlabel("Dissimilarity")
    ax.set_ylabel("Frequency")
    ax.grid(True, alpha=0.3)
    ax.legend()

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
        logging.info(f"Combined histogram saved to {save_path}")

    return fig


def plot_dendrogram(result: ClusterResult,
                    title: str = "Cell dendrogram",
                    save_path: Optional[str] = None) -> plt.Figure:
    """Draw the linkage tree with leaves labelled by cell name."""
    fig, ax = plt.subplots(figsize=(max(8, len(result.cells) * 0.25), 6))
    dendrogram(result.linkage, labels=result.cells, ax=ax, leaf_rotation=90)
    ax.set_title(f"{title} ({result.method} linkage, k={result.k})")
    ax.set_ylabel("Dissimilarity")

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
        logging.info(f"Dendrogram saved to {save_path}")

    return fig

"""
Command-line interface for scMethClust.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

from .analyze import (
    calculate_cluster_separation,
    create_combined_histogram,
    create_histogram,
    pairwise_values,
    plot_dendrogram,
    summarize_clustering,
)
from .clustering import DEFAULT_LINKAGE_METHOD, LINKAGE_METHODS, cluster
from .matrix import DEFAULT_MEASURE, MEASURES, assemble
from .pairwise import ON_ERROR_MODES, PairwiseComparison
from .utils import (
    load_cpg_tables,
    load_subset,
    save_clusters_to_file,
    save_matrix,
    save_records,
)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_diagonal(value: str) -> float:
    """Parse the --diagonal option; 'NA' or 'nan' means missing."""
    if value.strip().lower() in ("na", "nan", "none"):
        return np.nan
    try:
        return float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid diagonal value: {value!r}")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='scMethClust: pairwise dissimilarity and hierarchical clustering of single-cell CpG methylation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scmethclust cells/*.cov.gz -k 4                      # Writes scmethclust.pairwise.tsv, .matrix.tsv, .clusters.tsv
  scmethclust cells/*.cov -k 3 -o results/run1 -t 8
  scmethclust cells/*.cov -k 3 --measure manhattan_distance --linkage complete
  scmethclust cells/*.cov -k 2 --subset keep.txt --no-digital
  scmethclust cells/*.cov -k 5 --export-metrics metrics.json --plot -v
        """
    )

    # Required arguments
    parser.add_argument(
        'inputs',
        nargs='+',
        help='Per-cell methylation call files (tab-separated: chrom, start, end, percent, ...)'
    )
    parser.add_argument(
        '-k', '--clusters',
        type=int,
        required=True,
        help='Number of clusters to cut the dendrogram into'
    )

    # Output options
    parser.add_argument(
        '-o', '--output',
        default='scmethclust',
        help='Output prefix for result files (default: scmethclust)'
    )
    parser.add_argument(
        '--format',
        choices=['tsv', 'text'],
        default='tsv',
        help='Cluster assignment output format (default: tsv)'
    )

    # Comparison parameters
    parser.add_argument(
        '--no-digital',
        action='store_true',
        help='Keep non-binary methylation calls (default: only 0%% and 100%% calls are compared)'
    )
    parser.add_argument(
        '-t', '--threads',
        type=int,
        help='Number of parallel workers, 2 or more (default: CPU count)'
    )
    parser.add_argument(
        '--on-pair-error',
        choices=list(ON_ERROR_MODES),
        default='raise',
        help='Abort on the first failing cell pair, or collect failures and continue (default: raise)'
    )

    # Matrix and clustering parameters
    parser.add_argument(
        '--measure',
        choices=list(MEASURES),
        default=DEFAULT_MEASURE,
        help=f'Dissimilarity measure used for the matrix (default: {DEFAULT_MEASURE})'
    )
    parser.add_argument(
        '--diagonal',
        type=parse_diagonal,
        default=np.nan,
        help='Value for the matrix diagonal (default: NA)'
    )
    parser.add_argument(
        '--subset',
        help='File listing cell names (one per line) to restrict the matrix to'
    )
    parser.add_argument(
        '--linkage',
        choices=list(LINKAGE_METHODS),
        default=DEFAULT_LINKAGE_METHOD,
        help=f'Hierarchical clustering linkage method (default: {DEFAULT_LINKAGE_METHOD})'
    )

    # Additional options
    parser.add_argument(
        '--export-metrics',
        help='Export clustering summary metrics to JSON file'
    )
    parser.add_argument(
        '--plot',
        action='store_true',
        help='Save dendrogram and dissimilarity histogram PNGs next to the output prefix'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def main():
    """Main entry point for the scMethClust CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Setup logging
    setup_logging(args.verbose)

    try:
        input_paths = [Path(p) for p in args.inputs]
        missing = [str(p) for p in input_paths if not p.exists()]
        if missing:
            logging.error(f"Input files not found: {', '.join(missing)}")
            sys.exit(1)

        output_prefix = Path(args.output)
        if output_prefix.parent and not output_prefix.parent.exists():
            output_prefix.parent.mkdir(parents=True, exist_ok=True)

        show_progress = not args.no_progress
        tables = load_cpg_tables(input_paths, show_progress=show_progress)

        comparison = PairwiseComparison(
            digital_only=not args.no_digital,
            num_workers=args.threads,
            on_error=args.on_pair_error,
            show_progress=show_progress,
        )
        pairwise = comparison.run(tables)

        pairwise_path = f"{output_prefix}.pairwise.tsv"
        save_records(pairwise.records, pairwise_path)
        logging.info(f"Pairwise dissimilarities written to {pairwise_path}")

        subset = load_subset(args.subset) if args.subset else None
        matrix = assemble(pairwise.records, measure=args.measure,
                          diagonal_value=args.diagonal, subset=subset)

        matrix_path = f"{output_prefix}.matrix.tsv"
        save_matrix(matrix, matrix_path)
        logging.info(f"Dissimilarity matrix ({len(matrix)} cells) written to {matrix_path}")

        result = cluster(matrix, args.clusters, method=args.linkage)

        ext = '.tsv' if args.format == 'tsv' else '.txt'
        clusters_path = f"{output_prefix}.clusters{ext}"
        save_clusters_to_file(result, clusters_path, format=args.format)
        logging.info(f"Cluster assignments written to {clusters_path}")

        if args.export_metrics:
            logging.info(f"Exporting metrics to {args.export_metrics}")
            metrics = summarize_clustering(matrix, result)
            metrics["measure"] = args.measure
            metrics["n_pairs"] = len(pairwise.pairs)
            metrics["n_pair_errors"] = len(pairwise.errors)

            def convert_to_json_serializable(obj):
                if isinstance(obj, np.ndarray):
                    return obj.tolist()
                elif isinstance(obj, (float, np.floating)) and np.isnan(obj):
                    return None
                elif isinstance(obj, (np.integer, np.floating)):
                    return float(obj)
                elif isinstance(obj, dict):
                    return {k: convert_to_json_serializable(v) for k, v in obj.items()}
                elif isinstance(obj, list):
                    return [convert_to_json_serializable(item) for item in obj]
                return obj

            with open(args.export_metrics, 'w') as f:
                json.dump(convert_to_json_serializable(metrics), f, indent=2)

        if args.plot:
            import matplotlib.pyplot as plt

            fig = create_histogram(pairwise_values(matrix), f"Pairwise {args.measure}",
                                   xlabel=args.measure,
                                   save_path=f"{output_prefix}.pairwise_histogram.png")
            plt.close(fig)
            intra, inter = calculate_cluster_separation(matrix, result)
            fig = create_combined_histogram(intra, inter, save_path=f"{output_prefix}.histogram.png")
            plt.close(fig)
            fig = plot_dendrogram(result, save_path=f"{output_prefix}.dendrogram.png")
            plt.close(fig)

        logging.debug("Done!")

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()

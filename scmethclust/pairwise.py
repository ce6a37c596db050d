"""
Pairwise comparison of single-cell CpG methylation tables.

This module joins the CpG tables of every pair of cells on genomic position and
scores how different the two methylation profiles are at their shared sites.
All C(n, 2) pairs are split into contiguous batches which run in parallel on a
process (or thread) pool; results are stitched back together in the original
pair order.
"""

import logging
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from .batching import BatchRange, batch_sizes, partition
from .cpg_table import (
    CHROMOSOME,
    CPG_COLUMNS,
    POSITION,
    TableLike,
    filter_digital,
    validate_cpg_table,
)
from .errors import ConfigurationError, PairComparisonError

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    "cell_a",
    "cell_b",
    "shared_site_count",
    "pearson_correlation",
    "manhattan_distance",
    "manhattan_distance_scaled",
]

ON_ERROR_MODES = ("raise", "collect")
EXECUTOR_TYPES = ("process", "thread")

CellPair = Tuple[str, str]


@dataclass(frozen=True)
class DissimilarityRecord:
    """Dissimilarity between two cells at their shared CpG sites.

    pearson_correlation and manhattan_distance_scaled are None when they are
    undefined (no shared sites, or zero variance for the correlation).
    """
    cell_a: str
    cell_b: str
    shared_site_count: int
    pearson_correlation: Optional[float]
    manhattan_distance: float
    manhattan_distance_scaled: Optional[float]

    @property
    def comparable(self) -> bool:
        return self.shared_site_count > 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class PairError:
    """A pair whose comparison failed while running in collect mode."""
    cell_a: str
    cell_b: str
    reason: str


@dataclass
class PairwiseResult:
    """Output of a pairwise comparison run."""
    pairs: List[CellPair]
    records: List[DissimilarityRecord] = field(default_factory=list)
    joined: Dict[CellPair, pd.DataFrame] = field(default_factory=dict)
    errors: List[PairError] = field(default_factory=list)
    batches: List[BatchRange] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        """Long-form table of the dissimilarity records."""
        return records_to_frame(self.records)


def records_to_frame(records: Union[Iterable[DissimilarityRecord], pd.DataFrame]) -> pd.DataFrame:
    """
    Convert dissimilarity records to a long-form DataFrame.

    Undefined values become NaN. A DataFrame input is checked for the record
    columns and returned as a copy.
    """
    if isinstance(records, pd.DataFrame):
        missing = [col for col in RECORD_COLUMNS if col not in records.columns]
        if missing:
            raise ValueError(f"Dissimilarity table is missing columns: {missing}")
        return records[RECORD_COLUMNS].copy()

    rows = [record.to_dict() for record in records]
    df = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    for col in ("pearson_correlation", "manhattan_distance", "manhattan_distance_scaled"):
        df[col] = df[col].astype(np.float64)
    df["shared_site_count"] = df["shared_site_count"].astype(np.int64)
    return df


def enumerate_pairs(names: Sequence[str]) -> List[CellPair]:
    """All unordered pairs of names, in combinations() order."""
    return list(combinations(names, 2))


def join_pair(table_a: pd.DataFrame, table_b: pd.DataFrame,
              name_a: str = "a", name_b: str = "b",
              digital_only: bool = True) -> pd.DataFrame:
    """
    Inner-join two CpG tables on (chromosome, position).

    Args:
        table_a, table_b: Validated CpG tables
        name_a, name_b: Cell names used as the value column headers
        digital_only: If True, drop calls other than 0 and 100 percent first

    Returns:
        DataFrame with columns chromosome, position, name_a, name_b holding
        only the sites present in both tables
    """
    one = table_a[CPG_COLUMNS]
    two = table_b[CPG_COLUMNS]
    if digital_only:
        one = filter_digital(one)
        two = filter_digital(two)

    merged = pd.merge(one, two, on=[CHROMOSOME, POSITION], how="inner", sort=False)
    merged.columns = [CHROMOSOME, POSITION, name_a, name_b]
    return merged.reset_index(drop=True)


def pearson_correlation(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """Pearson correlation, or None with fewer than two sites or zero variance."""
    if len(x) < 2:
        return None
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt(np.dot(dx, dx) * np.dot(dy, dy))
    if denominator == 0:
        return None
    r = float(np.dot(dx, dy) / denominator)
    # Clamp floating point overshoot
    return max(-1.0, min(1.0, r))


def difference_from_joined(joined: pd.DataFrame) -> DissimilarityRecord:
    """
    Score a joined pair table produced by join_pair.

    The cell names are read from the third and fourth column headers.
    """
    if joined.shape[1] != 4:
        raise ValueError(
            f"Joined table must have 4 columns (chromosome, position, cell_a, cell_b), "
            f"got {joined.shape[1]}"
        )
    name_a, name_b = str(joined.columns[2]), str(joined.columns[3])
    x = joined.iloc[:, 2].to_numpy(dtype=np.float64)
    y = joined.iloc[:, 3].to_numpy(dtype=np.float64)

    total = len(joined)
    manhattan = float(np.abs(x - y).sum())

    return DissimilarityRecord(
        cell_a=name_a,
        cell_b=name_b,
        shared_site_count=total,
        pearson_correlation=pearson_correlation(x, y),
        manhattan_distance=manhattan,
        manhattan_distance_scaled=manhattan / total if total else None,
    )


def compare(table_a: pd.DataFrame, table_b: pd.DataFrame,
            digital_only: bool = True,
            name_a: str = "a", name_b: str = "b") -> DissimilarityRecord:
    """Join two CpG tables and score their dissimilarity."""
    return difference_from_joined(join_pair(table_a, table_b, name_a, name_b, digital_only))


class PairwiseWorker:
    """Processes contiguous ranges of pair indices against a fixed set of tables."""

    def __init__(self, tables: Mapping[str, pd.DataFrame], pairs: List[CellPair],
                 digital_only: bool, compute_difference: bool, on_error: str):
        self.tables = tables
        self.pairs = pairs
        self.digital_only = digital_only
        self.compute_difference = compute_difference
        self.on_error = on_error

    def process_range(self, start: int, end: int) -> Tuple[List, List[PairError]]:
        """Process pairs start..end (1-based, inclusive) in index order."""
        results = []
        errors = []
        for index in range(start, end + 1):
            name_a, name_b = self.pairs[index - 1]
            try:
                joined = join_pair(self.tables[name_a], self.tables[name_b],
                                   name_a, name_b, self.digital_only)
                if self.compute_difference:
                    results.append(difference_from_joined(joined))
                else:
                    results.append(((name_a, name_b), joined))
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
                if self.on_error == "raise":
                    raise PairComparisonError(name_a, name_b, reason) from e
                errors.append(PairError(name_a, name_b, reason))
        return results, errors


# Per-process worker, set by the pool initializer
_worker_instance = None


def _init_worker(tables, pairs, digital_only, compute_difference, on_error):
    """Initialize the worker instance for this process."""
    global _worker_instance
    _worker_instance = PairwiseWorker(tables, pairs, digital_only, compute_difference, on_error)


def _run_batch(worker: PairwiseWorker, batch_index: int, start: int, end: int):
    results, errors = worker.process_range(start, end)
    return batch_index, results, errors


def _process_batch_worker(args):
    """Multiprocessing entry point: (batch_index, start, end) on the process-local worker."""
    batch_index, start, end = args
    return _run_batch(_worker_instance, batch_index, start, end)


class PairwiseComparison:
    """
    Parallel all-pairs comparison of single-cell CpG tables.

    Pairs are enumerated deterministically, split into batch ranges with
    partition(), and each batch is processed sequentially by one pool worker.
    Batches are reassembled by index, so output order always matches the pair
    enumeration order.

    For library usage:
    - Set show_progress=False to disable progress bars in headless environments
    - Pass a custom logger to integrate with your application's logging system
    - Use executor="thread" to avoid process start-up cost on small inputs
    """

    def __init__(self,
                 digital_only: bool = True,
                 num_workers: Optional[int] = None,
                 compute_difference: bool = True,
                 on_error: str = "raise",
                 executor: str = "process",
                 show_progress: bool = True,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the pairwise comparison.

        Args:
            digital_only: Discard non-binary methylation calls before joining (default True)
            num_workers: Number of parallel workers, 2 or more (default: CPU count, at least 2)
            compute_difference: Return dissimilarity records (True) or joined tables (False)
            on_error: "raise" aborts on the first failing pair, "collect" records
                per-pair errors and continues
            executor: "process" or "thread" pool
            show_progress: If True, show a progress bar (default True)
            logger: Optional logger instance for output; uses module logger if None

        Raises:
            ConfigurationError: If any parameter is invalid
        """
        if num_workers is not None and (isinstance(num_workers, bool)
                                        or not isinstance(num_workers, int)
                                        or num_workers < 2):
            raise ConfigurationError(
                f"parallelism requires 2 or more workers (got {num_workers!r})"
            )
        if on_error not in ON_ERROR_MODES:
            raise ConfigurationError(f"on_error must be one of {ON_ERROR_MODES}, got {on_error!r}")
        if executor not in EXECUTOR_TYPES:
            raise ConfigurationError(f"executor must be one of {EXECUTOR_TYPES}, got {executor!r}")

        self.digital_only = digital_only
        self.num_workers = num_workers
        self.compute_difference = compute_difference
        self.on_error = on_error
        self.executor = executor
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger(__name__)

    def resolve_workers(self) -> int:
        """Worker count for this run."""
        if self.num_workers is not None:
            return self.num_workers
        return max(2, os.cpu_count() or 2)

    def run(self, tables: Mapping[str, TableLike]) -> PairwiseResult:
        """
        Compare every pair of cells.

        Args:
            tables: Mapping of cell name to CpG table

        Returns:
            PairwiseResult with records (compute_difference=True) or joined
            tables (compute_difference=False), plus any collected pair errors

        Raises:
            ConfigurationError: If a cell name is not a non-empty string
            MalformedTableError: If any table fails validation
            PairComparisonError: If a pair fails and on_error is "raise"
        """
        num_workers = self.resolve_workers()

        validated = {}
        for name, table in tables.items():
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Cell names must be non-empty strings, got {name!r}")
            validated[name] = validate_cpg_table(table, name)

        pairs = enumerate_pairs(list(validated))
        if not pairs:
            self.logger.warning(f"Need at least 2 cells for pairwise comparison, got {len(validated)}")
            return PairwiseResult(pairs=[])

        batches = partition(len(pairs), num_workers)
        self.logger.info(f"Comparing {len(pairs)} cell pairs from {len(validated)} cells "
                         f"in {len(batches)} batches using {num_workers} workers")
        self.logger.debug(f"Batch ranges: {batches}, sizes: {batch_sizes(batches)}")

        batch_outputs = self._run_batches(validated, pairs, batches, num_workers)

        result = PairwiseResult(pairs=pairs, batches=batches)
        for results, errors in batch_outputs:
            if self.compute_difference:
                result.records.extend(results)
            else:
                result.joined.update(results)
            result.errors.extend(errors)

        for error in result.errors:
            self.logger.warning(f"Pair {error.cell_a} / {error.cell_b} failed: {error.reason}")

        if self.compute_difference:
            empty = [r for r in result.records if not r.comparable]
            if empty:
                self.logger.warning(f"{len(empty)} cell pairs share no CpG sites; "
                                    f"they will be missing from the dissimilarity matrix")
            self.logger.info(f"Computed {len(result.records)} pairwise dissimilarities")
        else:
            self.logger.info(f"Joined {len(result.joined)} cell pairs")

        return result

    def _run_batches(self, tables: Dict[str, pd.DataFrame], pairs: List[CellPair],
                     batches: List[BatchRange], num_workers: int) -> List[Tuple[List, List[PairError]]]:
        """Fan batches out to the pool and collect results in batch order."""
        outputs: List[Optional[Tuple[List, List[PairError]]]] = [None] * len(batches)
        max_workers = min(num_workers, len(batches))
        worker_args = (tables, pairs, self.digital_only, self.compute_difference, self.on_error)

        pbar = tqdm(total=len(pairs), desc="Comparing cell pairs", unit=" pairs",
                    disable=not self.show_progress)
        try:
            if self.executor == "process":
                pool = ProcessPoolExecutor(max_workers=max_workers,
                                           initializer=_init_worker,
                                           initargs=worker_args)
            else:
                pool = ThreadPoolExecutor(max_workers=max_workers)
                worker = PairwiseWorker(*worker_args)

            with pool as executor:
                futures = []
                for batch_index, (start, end) in enumerate(batches):
                    if self.executor == "process":
                        futures.append(executor.submit(_process_batch_worker, (batch_index, start, end)))
                    else:
                        futures.append(executor.submit(_run_batch, worker, batch_index, start, end))

                try:
                    for future in as_completed(futures):
                        batch_index, results, errors = future.result()
                        outputs[batch_index] = (results, errors)
                        start, end = batches[batch_index]
                        pbar.update(end - start + 1)
                except Exception:
                    for future in futures:
                        future.cancel()
                    raise
        finally:
            pbar.close()

        return outputs


def run_all(tables: Mapping[str, TableLike],
            digital_only: bool = True,
            workers: Optional[int] = None,
            compute_difference: bool = True,
            **kwargs) -> Union[List[DissimilarityRecord], Dict[CellPair, pd.DataFrame]]:
    """
    Compare all pairs of cells.

    Returns the list of DissimilarityRecords when compute_difference is True,
    otherwise a dict mapping (cell_a, cell_b) to the joined table. Extra keyword
    arguments are passed to PairwiseComparison.
    """
    comparison = PairwiseComparison(digital_only=digital_only,
                                    num_workers=workers,
                                    compute_difference=compute_difference,
                                    **kwargs)
    result = comparison.run(tables)
    return result.records if compute_difference else result.joined

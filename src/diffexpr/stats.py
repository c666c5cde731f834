"""
Statistical analysis functions for differential expression testing.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numba as nb
import numpy as np
import polars as pl
from scipy import stats
from statsmodels.stats.multitest import multipletests
from tqdm.auto import tqdm

from .data import resolve_sample_groups

logger = logging.getLogger(__name__)

# Pooled standard deviations below this are treated as zero
ZERO_SD_TOLERANCE = 1e-10

SIGNIFICANT = "Significant"
NOT_SIGNIFICANT = "Not Significant"
UPREGULATED = "Upregulated"
DOWNREGULATED = "Downregulated"
NOT_CHANGED = "Not Changed"
REGULATION_LABELS = (UPREGULATED, DOWNREGULATED, NOT_CHANGED)

RESULT_SCHEMA = {
    'gene_id': pl.Utf8,
    'group_a_mean': pl.Float64,
    'group_b_mean': pl.Float64,
    'log2FC': pl.Float64,
    'cohens_d': pl.Float64,
    'p_value': pl.Float64,
    'p_adjusted': pl.Float64,
    'significance': pl.Utf8,
    'regulation': pl.Utf8,
}
RESULT_COLUMNS = list(RESULT_SCHEMA)

tqdm_kwargs = {
    'leave': False,
    'dynamic_ncols': True,
}


@nb.njit
def _mean(arr):
    """Calculate mean of array using Numba"""
    if len(arr) == 0:
        return np.nan
    return np.sum(arr) / len(arr)


@nb.njit
def _variance(arr):
    """Sample variance (ddof=1) using Numba"""
    n = len(arr)
    if n < 2:
        return np.nan
    mean = _mean(arr)
    sq_diff = 0.0
    for i in range(n):
        diff = arr[i] - mean
        sq_diff += diff * diff
    return sq_diff / (n - 1)


@nb.njit
def _pooled_sd(group_a, group_b):
    """
    Pooled standard deviation of two samples.

    NaN when either group has fewer than two values.
    """
    n1 = len(group_a)
    n2 = len(group_b)
    if n1 < 2 or n2 < 2:
        return np.nan
    pooled_var = ((n1 - 1) * _variance(group_a) + (n2 - 1) * _variance(group_b)) / (n1 + n2 - 2)
    return np.sqrt(pooled_var)


def _is_degenerate(pooled_sd: float) -> bool:
    return not np.isfinite(pooled_sd) or pooled_sd < ZERO_SD_TOLERANCE


def two_sample_ttest(group_a, group_b, equal_var: bool = True) -> Tuple[float, float]:
    """
    Two-sided two-sample t-test.

    Args:
        group_a: Values of the first group
        group_b: Values of the second group
        equal_var: Student's test if True, Welch's test otherwise

    Returns:
        Tuple of (t statistic, p-value); both NaN when the genes cannot be tested
        (fewer than two values in a group, or zero pooled variance)
    """
    group_a = np.asarray(group_a, dtype=np.float64)
    group_b = np.asarray(group_b, dtype=np.float64)

    if _is_degenerate(_pooled_sd(group_a, group_b)):
        return float('nan'), float('nan')

    t_stat, p_value = stats.ttest_ind(group_a, group_b, equal_var=equal_var)
    return float(t_stat), float(p_value)


def cohens_d(group_a, group_b) -> float:
    """
    Standardised mean difference using the pooled standard deviation.

    Args:
        group_a: Values of the first group
        group_b: Values of the second group

    Returns:
        Cohen's d, or NaN when the pooled standard deviation is zero or undefined
    """
    group_a = np.asarray(group_a, dtype=np.float64)
    group_b = np.asarray(group_b, dtype=np.float64)

    pooled_sd = _pooled_sd(group_a, group_b)
    if _is_degenerate(pooled_sd):
        return float('nan')

    return float((_mean(group_a) - _mean(group_b)) / pooled_sd)


def benjamini_hochberg(p_values, n_tests: Optional[int] = None) -> np.ndarray:
    """
    Benjamini-Hochberg adjusted p-values.

    NaN p-values are left as NaN and do not count towards the number of tests.

    Args:
        p_values: Array of raw p-values
        n_tests: Number of tests to correct for. Defaults to the number of
            defined p-values; a larger value corrects for genes that were not tested.

    Returns:
        Array of adjusted p-values in the input order
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    adjusted = np.full(p_values.shape, np.nan)

    defined = ~np.isnan(p_values)
    n_defined = int(defined.sum())
    if n_defined == 0:
        return adjusted

    if n_tests is None:
        n_tests = n_defined
    if n_tests < n_defined:
        raise ValueError(f"n_tests ({n_tests}) is smaller than the number of p-values ({n_defined})")

    # Untested genes enter the correction as p = 1, which only raises N
    padded = np.concatenate([p_values[defined], np.ones(n_tests - n_defined)])
    _, pvals_corrected, _, _ = multipletests(padded, method='fdr_bh')

    adjusted[defined] = pvals_corrected[:n_defined]
    return adjusted


def classify_gene(
    p_adjusted: float,
    log2fc: float,
    alpha: float = 0.05,
    fold_change_cutoff: float = 1.0
) -> Tuple[str, str]:
    """
    Label a gene by significance and regulation direction.

    Args:
        p_adjusted: Adjusted p-value
        log2fc: Log2 fold change
        alpha: Adjusted p-value cutoff (exclusive)
        fold_change_cutoff: Absolute log2 fold change cutoff (exclusive)

    Returns:
        Tuple of (significance, regulation)
    """
    passes_fdr = p_adjusted < alpha

    if passes_fdr and abs(log2fc) > fold_change_cutoff:
        significance = SIGNIFICANT
    else:
        significance = NOT_SIGNIFICANT

    if passes_fdr and log2fc > fold_change_cutoff:
        regulation = UPREGULATED
    elif passes_fdr and log2fc < -fold_change_cutoff:
        regulation = DOWNREGULATED
    else:
        regulation = NOT_CHANGED

    return significance, regulation


def differential_expression(
    log_matrix: pl.DataFrame,
    treatment: Sequence[str],
    control: Sequence[str],
    alpha: float = 0.05,
    fold_change_cutoff: float = 1.0,
    equal_var: bool = True,
    n_tests: Optional[int] = None,
    show_progress: bool = False
) -> pl.DataFrame:
    """
    Test every gene of a log-transformed matrix for a treatment/control difference.

    Args:
        log_matrix: Filtered, log2-transformed expression matrix
        treatment: Sample identifiers of group A
        control: Sample identifiers of group B
        alpha: Adjusted p-value cutoff for classification
        fold_change_cutoff: Absolute log2 fold change cutoff for classification
        equal_var: Student's t-test if True, Welch's t-test otherwise
        n_tests: Number of tests for the Benjamini-Hochberg correction,
            defaults to the number of genes tested here
        show_progress: Display a progress bar over genes

    Returns:
        DataFrame with one row per gene, sorted by adjusted p-value
    """
    treatment, control = resolve_sample_groups(log_matrix, treatment, control)

    if log_matrix.height == 0:
        logger.info("No genes to test")
        return pl.DataFrame(schema=RESULT_SCHEMA)

    gene_ids = log_matrix[log_matrix.columns[0]].cast(pl.Utf8).to_list()
    values_a = np.ascontiguousarray(log_matrix.select(treatment).to_numpy(), dtype=np.float64)
    values_b = np.ascontiguousarray(log_matrix.select(control).to_numpy(), dtype=np.float64)

    records = []
    for i, gene_id in enumerate(tqdm(gene_ids, desc="Testing genes", disable=not show_progress, **tqdm_kwargs)):
        group_a = values_a[i]
        group_b = values_b[i]

        mean_a = float(_mean(group_a))
        mean_b = float(_mean(group_b))
        _, p_value = two_sample_ttest(group_a, group_b, equal_var=equal_var)

        if np.isnan(p_value):
            logger.debug(f"Gene {gene_id} could not be tested (insufficient replicates or zero variance)")

        records.append({
            'gene_id': gene_id,
            'group_a_mean': mean_a,
            'group_b_mean': mean_b,
            'log2FC': mean_a - mean_b,
            'cohens_d': cohens_d(group_a, group_b),
            'p_value': p_value,
        })

    p_adjusted = benjamini_hochberg([r['p_value'] for r in records], n_tests=n_tests)

    for record, adjusted in zip(records, p_adjusted):
        record['p_adjusted'] = float(adjusted)
        record['significance'], record['regulation'] = classify_gene(
            record['p_adjusted'],
            record['log2FC'],
            alpha=alpha,
            fold_change_cutoff=fold_change_cutoff
        )

    untestable = sum(1 for r in records if np.isnan(r['p_value']))
    if untestable:
        logger.info(f"{untestable} of {len(records)} genes could not be tested")

    # Stable sort, undefined adjusted p-values last
    results = pl.DataFrame(records, schema=RESULT_SCHEMA)
    return (
        results
        .with_columns(pl.col('p_adjusted').fill_nan(None).alias('_sort_key'))
        .sort('_sort_key', nulls_last=True, maintain_order=True)
        .drop('_sort_key')
    )


def summarise_regulation(results: pl.DataFrame) -> pl.DataFrame:
    """
    Count genes per regulation label.

    Args:
        results: Output of differential_expression

    Returns:
        DataFrame with regulation and count columns, one row per label
    """
    counts: Dict[str, int] = {label: 0 for label in REGULATION_LABELS}
    for label in results['regulation'].to_list():
        counts[label] = counts.get(label, 0) + 1

    return pl.DataFrame({
        'regulation': list(counts.keys()),
        'count': list(counts.values()),
    })


def significant_genes(results: pl.DataFrame, top_n: Optional[int] = None) -> List[str]:
    """
    Identifiers of significant genes in result order.

    Args:
        results: Output of differential_expression
        top_n: Optional maximum number of genes to return

    Returns:
        List of gene identifiers
    """
    genes = results.filter(pl.col('significance') == SIGNIFICANT)['gene_id'].to_list()
    if top_n is not None:
        genes = genes[:top_n]
    return genes

"""
Loading, validation and preprocessing of gene expression tables.

An expression matrix is a polars DataFrame whose first column holds the gene
identifiers and whose remaining columns hold one Float64 column per sample.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import polars as pl

from .errors import ConfigurationError, FormatError

logger = logging.getLogger(__name__)

TREATMENT_LABEL = "Treatment"
CONTROL_LABEL = "Control"
UNASSIGNED_LABEL = "Unassigned"

QC_SCHEMA = {
    'sample': pl.Utf8,
    'group': pl.Utf8,
    'mean_expr': pl.Float64,
    'median_expr': pl.Float64,
    'sd_expr': pl.Float64,
    'cv': pl.Float64,
}


def sample_columns(matrix: pl.DataFrame) -> List[str]:
    """Sample column names of an expression matrix (everything after the identifier)."""
    return matrix.columns[1:]


def _preview(values: Sequence[str], limit: int = 5) -> str:
    shown = ', '.join(str(v) for v in values[:limit])
    if len(values) > limit:
        shown += f" (+{len(values) - limit} more)"
    return shown


def load_expression_matrix(
    file_path: Union[str, Path],
    id_column: str = "gene_id"
) -> pl.DataFrame:
    """
    Load a comma-separated gene-by-sample count table.

    Args:
        file_path: Path to the CSV file
        id_column: Name of the gene identifier column

    Returns:
        Expression matrix with the identifier column first and Float64 sample columns

    Raises:
        FileNotFoundError: If the file does not exist
        FormatError: If the table is malformed or contains invalid values
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Expression file not found: {file_path}")

    # Read every cell as text so that bad values can be reported precisely
    try:
        raw = pl.read_csv(
            file_path,
            separator=',',
            has_header=True,
            infer_schema_length=0
        )
        # polars renames repeated column names, so check the header as written
        header = pl.read_csv(
            file_path,
            separator=',',
            has_header=False,
            n_rows=1,
            infer_schema_length=0
        ).row(0)
    except pl.exceptions.PolarsError as e:
        raise FormatError(f"Could not parse expression table {file_path}: {e}") from e

    repeated = sorted({name for name in header if header.count(name) > 1}, key=str)
    if repeated:
        raise FormatError(f"Duplicate sample identifiers: {_preview(repeated)}")

    if id_column not in raw.columns:
        raise FormatError(
            f"Identifier column '{id_column}' not found in {file_path}. "
            f"Available columns: {', '.join(raw.columns)}"
        )

    samples = [col for col in raw.columns if col != id_column]
    if not samples:
        raise FormatError(f"No sample columns found in {file_path}")

    if raw.height == 0:
        raise FormatError(f"Expression table {file_path} contains no genes")

    ids = raw[id_column]
    if ids.null_count() > 0 or (ids.str.strip_chars() == "").any():
        raise FormatError(f"Empty gene identifiers found in column '{id_column}'")

    duplicated = raw.filter(pl.col(id_column).is_duplicated())[id_column].unique(maintain_order=True).to_list()
    if duplicated:
        raise FormatError(f"Duplicate gene identifiers: {_preview(duplicated)}")

    # Missing values are rejected, never imputed
    null_counts = raw.select(samples).null_count().row(0)
    missing = [f"{col} ({count})" for col, count in zip(samples, null_counts) if count > 0]
    if missing:
        raise FormatError(f"Missing values found in sample columns: {', '.join(missing)}")

    matrix = raw.select(
        [pl.col(id_column)] +
        [pl.col(col).str.strip_chars().cast(pl.Float64, strict=False) for col in samples]
    )

    for col in samples:
        non_numeric = raw.filter(matrix[col].is_null())[col].to_list()
        if non_numeric:
            raise FormatError(f"Non-numeric values in sample column '{col}': {_preview(non_numeric)}")

        values = matrix[col]
        if (values.is_nan() | values.is_infinite()).any():
            raise FormatError(f"Non-finite values in sample column '{col}'")
        if (values < 0).any():
            negative = matrix.filter(pl.col(col) < 0)[id_column].to_list()
            raise FormatError(f"Negative expression values in sample column '{col}' for genes: {_preview(negative)}")

    logger.info(f"Loaded expression table with {matrix.height} genes x {len(samples)} samples")
    return matrix


def resolve_sample_groups(
    matrix: pl.DataFrame,
    treatment: Sequence[str],
    control: Sequence[str]
) -> Tuple[List[str], List[str]]:
    """
    Validate the treatment/control assignment against the matrix.

    Args:
        matrix: Expression matrix
        treatment: Sample identifiers of the treatment group (group A)
        control: Sample identifiers of the control group (group B)

    Returns:
        Tuple of (treatment samples, control samples)

    Raises:
        ConfigurationError: If a group is empty, lists a sample twice, the groups
            overlap, or a sample is missing from the matrix
    """
    treatment = list(treatment)
    control = list(control)
    available = set(sample_columns(matrix))

    for name, group in (("treatment", treatment), ("control", control)):
        if not group:
            raise ConfigurationError(f"Sample group '{name}' is empty")
        repeated = sorted({s for s in group if group.count(s) > 1})
        if repeated:
            raise ConfigurationError(f"Sample group '{name}' lists samples more than once: {', '.join(repeated)}")
        absent = [s for s in group if s not in available]
        if absent:
            raise ConfigurationError(
                f"Sample group '{name}' references samples absent from the expression table: {', '.join(absent)}"
            )

    overlap = sorted(set(treatment) & set(control))
    if overlap:
        raise ConfigurationError(f"Samples assigned to both groups: {', '.join(overlap)}")

    unassigned = [s for s in sample_columns(matrix) if s not in treatment and s not in control]
    if unassigned:
        logger.info(f"Samples not assigned to either group: {', '.join(unassigned)}")

    return treatment, control


def compute_sample_qc(
    matrix: pl.DataFrame,
    treatment: Optional[Sequence[str]] = None,
    control: Optional[Sequence[str]] = None
) -> pl.DataFrame:
    """
    Per-sample summary statistics of the raw counts.

    Args:
        matrix: Expression matrix (untransformed)
        treatment: Treatment sample identifiers, used for the group label
        control: Control sample identifiers, used for the group label

    Returns:
        DataFrame with sample, group, mean_expr, median_expr, sd_expr and cv columns
    """
    treatment = set(treatment or [])
    control = set(control or [])

    rows = []
    for sample in sample_columns(matrix):
        values = matrix[sample].to_numpy().astype(np.float64)

        if sample in treatment:
            group = TREATMENT_LABEL
        elif sample in control:
            group = CONTROL_LABEL
        else:
            group = UNASSIGNED_LABEL

        mean = float(np.mean(values)) if len(values) > 0 else float('nan')
        median = float(np.median(values)) if len(values) > 0 else float('nan')
        sd = float(np.std(values, ddof=1)) if len(values) > 1 else float('nan')
        # Coefficient of variation in percent
        cv = sd / mean * 100 if mean != 0 else float('nan')

        rows.append({
            'sample': sample,
            'group': group,
            'mean_expr': mean,
            'median_expr': median,
            'sd_expr': sd,
            'cv': cv,
        })

    if not rows:
        return pl.DataFrame(schema=QC_SCHEMA)

    return pl.DataFrame(rows, schema=QC_SCHEMA)


def log_transform(matrix: pl.DataFrame, pseudocount: float = 1.0) -> pl.DataFrame:
    """
    Apply log2(x + pseudocount) to every sample column.

    Args:
        matrix: Expression matrix
        pseudocount: Constant added before taking the logarithm

    Returns:
        Transformed expression matrix with the same shape and columns
    """
    return matrix.with_columns(
        [(pl.col(col) + pseudocount).log(base=2) for col in sample_columns(matrix)]
    )


def filter_low_expression(
    log_matrix: pl.DataFrame,
    threshold: float = 4.0
) -> Tuple[pl.DataFrame, int]:
    """
    Keep genes whose mean transformed expression across all samples exceeds the threshold.

    Args:
        log_matrix: Log-transformed expression matrix
        threshold: Genes with a mean at or below this value are dropped

    Returns:
        Tuple of (filtered matrix, number of genes dropped)
    """
    filtered = log_matrix.filter(pl.mean_horizontal(sample_columns(log_matrix)) > threshold)
    return filtered, log_matrix.height - filtered.height


def preprocess(
    matrix: pl.DataFrame,
    pseudocount: float = 1.0,
    threshold: float = 4.0
) -> Tuple[pl.DataFrame, int]:
    """
    Log-transform the matrix and drop low-expression genes.

    Args:
        matrix: Expression matrix
        pseudocount: Constant added before the log2 transform
        threshold: Minimum mean log2 expression (exclusive)

    Returns:
        Tuple of (filtered transformed matrix, number of genes dropped)
    """
    log_matrix = log_transform(matrix, pseudocount=pseudocount)
    filtered, n_dropped = filter_low_expression(log_matrix, threshold=threshold)

    logger.info(f"Genes before filtering: {matrix.height}")
    logger.info(f"Genes after filtering (mean log2 > {threshold}): {filtered.height}")
    if filtered.height == 0:
        logger.warning("No genes passed the expression filter")

    return filtered, n_dropped

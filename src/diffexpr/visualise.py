"""
Plots for quality control and differential expression results.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import polars as pl
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from .data import CONTROL_LABEL, TREATMENT_LABEL, UNASSIGNED_LABEL, sample_columns
from .stats import DOWNREGULATED, NOT_CHANGED, UPREGULATED, significant_genes

logger = logging.getLogger(__name__)

# Colour-blind safe palette
CB_PALETTE = ["#E69F00", "#56B4E9", "#009E73", "#F0E442",
              "#0072B2", "#D55E00", "#CC79A7"]

GROUP_COLOURS = {
    TREATMENT_LABEL: CB_PALETTE[0],
    CONTROL_LABEL: CB_PALETTE[1],
    UNASSIGNED_LABEL: "grey",
}

REGULATION_COLOURS = {
    UPREGULATED: CB_PALETTE[0],
    DOWNREGULATED: CB_PALETTE[1],
    NOT_CHANGED: "grey",
}


def _to_pandas(df: pl.DataFrame) -> pd.DataFrame:
    return pd.DataFrame(df.to_dict(as_series=False))


def _long_format(matrix: pl.DataFrame, sample_groups: Dict[str, str]) -> pd.DataFrame:
    """Reshape an expression matrix into sample/expression/group rows."""
    id_column = matrix.columns[0]
    long_df = _to_pandas(matrix).melt(
        id_vars=[id_column],
        var_name='sample',
        value_name='expression'
    )
    long_df['group'] = long_df['sample'].map(lambda s: sample_groups.get(s, UNASSIGNED_LABEL))
    return long_df


def sample_group_map(
    matrix: pl.DataFrame,
    treatment: Sequence[str],
    control: Sequence[str]
) -> Dict[str, str]:
    """Map every sample of the matrix to its group label."""
    groups = {}
    for sample in sample_columns(matrix):
        if sample in treatment:
            groups[sample] = TREATMENT_LABEL
        elif sample in control:
            groups[sample] = CONTROL_LABEL
        else:
            groups[sample] = UNASSIGNED_LABEL
    return groups


def plot_qc_boxplot(
    matrix: pl.DataFrame,
    sample_groups: Dict[str, str],
    output_file: Path,
    dpi: int = 300
) -> Path:
    """
    Box plot of raw expression per sample.

    Args:
        matrix: Untransformed expression matrix
        sample_groups: Sample to group label mapping
        output_file: File to write
        dpi: Resolution of the saved figure

    Returns:
        Path of the written figure
    """
    long_df = _long_format(matrix, sample_groups)

    fig, ax = plt.subplots(figsize=(8, 6))
    sns.boxplot(
        data=long_df,
        x='sample',
        y='expression',
        hue='group',
        palette=GROUP_COLOURS,
        dodge=False,
        ax=ax
    )
    ax.set_title("Expression Distribution Across Samples", fontweight='bold')
    ax.set_xlabel("Sample")
    ax.set_ylabel("Expression Level (counts)")
    ax.tick_params(axis='x', rotation=45)
    ax.legend(title="Group", loc='upper right')

    fig.tight_layout()
    fig.savefig(output_file, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return Path(output_file)


def plot_qc_density(
    matrix: pl.DataFrame,
    sample_groups: Dict[str, str],
    output_file: Path,
    pseudocount: float = 1.0,
    dpi: int = 300
) -> Path:
    """
    Density of log2(expression + pseudocount) per sample, line style by group.

    Args:
        matrix: Untransformed expression matrix
        sample_groups: Sample to group label mapping
        output_file: File to write
        pseudocount: Pseudocount used for the transform
        dpi: Resolution of the saved figure

    Returns:
        Path of the written figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    for i, sample in enumerate(sample_columns(matrix)):
        values = np.log2(matrix[sample].to_numpy().astype(np.float64) + pseudocount)
        # A constant sample has no density to draw
        if np.ptp(values) == 0:
            logger.debug(f"Skipping density for constant sample {sample}")
            continue
        linestyle = '--' if sample_groups.get(sample) == CONTROL_LABEL else '-'
        sns.kdeplot(
            x=values,
            ax=ax,
            color=CB_PALETTE[i % len(CB_PALETTE)],
            linestyle=linestyle,
            linewidth=0.8,
            label=f"{sample} ({sample_groups.get(sample, UNASSIGNED_LABEL)})"
        )

    ax.set_title("Expression Density Distribution", fontweight='bold')
    ax.set_xlabel(f"Log2(Expression + {pseudocount:g})")
    ax.set_ylabel("Density")
    if ax.get_legend_handles_labels()[0]:
        ax.legend(title="Sample", bbox_to_anchor=(1.02, 1), loc='upper left')

    fig.tight_layout()
    fig.savefig(output_file, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return Path(output_file)


def plot_volcano(
    results: pl.DataFrame,
    output_file: Path,
    alpha: float = 0.05,
    fold_change_cutoff: float = 1.0,
    dpi: int = 300
) -> Path:
    """
    Volcano plot of log2 fold change against -log10 raw p-value.

    Args:
        results: Output of differential_expression
        output_file: File to write
        alpha: p-value guide line
        fold_change_cutoff: Fold change guide lines
        dpi: Resolution of the saved figure

    Returns:
        Path of the written figure
    """
    df = _to_pandas(results)
    p_values = np.clip(df['p_value'].to_numpy(dtype=np.float64), np.finfo(np.float64).tiny, 1.0)
    df['neg_log10_p'] = -np.log10(p_values)

    fig, ax = plt.subplots(figsize=(8, 7))
    for label in (NOT_CHANGED, DOWNREGULATED, UPREGULATED):
        subset = df[df['regulation'] == label]
        ax.scatter(
            subset['log2FC'],
            subset['neg_log10_p'],
            c=REGULATION_COLOURS[label],
            alpha=0.6,
            s=25,
            label=label
        )

    ax.axhline(-np.log10(alpha), linestyle='--', color='grey', linewidth=0.5)
    ax.axvline(-fold_change_cutoff, linestyle='--', color='grey', linewidth=0.5)
    ax.axvline(fold_change_cutoff, linestyle='--', color='grey', linewidth=0.5)

    n_up = int((df['regulation'] == UPREGULATED).sum())
    n_down = int((df['regulation'] == DOWNREGULATED).sum())
    ax.set_title(
        f"Volcano Plot: Treatment vs Control\nUpregulated: {n_up} | Downregulated: {n_down}",
        fontweight='bold'
    )
    ax.set_xlabel("Log2 Fold Change (Treatment/Control)")
    ax.set_ylabel("-Log10(p-value)")
    ax.legend(title="Regulation", loc='upper left')

    fig.tight_layout()
    fig.savefig(output_file, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return Path(output_file)


def plot_expression_heatmap(
    log_matrix: pl.DataFrame,
    results: pl.DataFrame,
    treatment: Sequence[str],
    control: Sequence[str],
    output_file: Path,
    top_n: int = 20,
    dpi: int = 300
) -> Optional[Path]:
    """
    Clustered heatmap of row z-scores for the top significant genes.

    Args:
        log_matrix: Log-transformed expression matrix
        results: Output of differential_expression
        treatment: Treatment sample identifiers
        control: Control sample identifiers
        output_file: File to write
        top_n: Maximum number of genes to show
        dpi: Resolution of the saved figure

    Returns:
        Path of the written figure, or None when no gene is significant
    """
    top_genes = significant_genes(results, top_n=top_n)
    if not top_genes:
        logger.info("No significant genes found for heatmap")
        return None

    id_column = log_matrix.columns[0]
    samples = list(treatment) + list(control)
    data = _to_pandas(log_matrix.select([id_column] + samples)).set_index(id_column)
    data.index = data.index.astype(str)
    data = data.loc[top_genes]

    # Row z-scores
    z_scores = data.sub(data.mean(axis=1), axis=0).div(data.std(axis=1, ddof=1), axis=0)

    col_colors = pd.Series(
        [GROUP_COLOURS[TREATMENT_LABEL]] * len(treatment) + [GROUP_COLOURS[CONTROL_LABEL]] * len(control),
        index=samples,
        name="Group"
    )

    grid = sns.clustermap(
        z_scores,
        method='complete',
        metric='euclidean',
        row_cluster=len(top_genes) > 1,
        col_cluster=len(samples) > 1,
        col_colors=col_colors,
        cmap='RdBu_r',
        center=0,
        figsize=(8, 10),
        xticklabels=True,
        yticklabels=True
    )
    grid.figure.suptitle(f"Top {len(top_genes)} Differentially Expressed Genes (Z-score normalized)")
    grid.savefig(output_file, dpi=dpi, bbox_inches="tight")
    plt.close(grid.figure)
    return Path(output_file)


def create_report_plots(
    matrix: pl.DataFrame,
    log_matrix: pl.DataFrame,
    results: pl.DataFrame,
    treatment: Sequence[str],
    control: Sequence[str],
    output_path: Path,
    pseudocount: float = 1.0,
    alpha: float = 0.05,
    fold_change_cutoff: float = 1.0,
    top_n: int = 20,
    file_format: str = 'png',
    dpi: int = 300
) -> List[Path]:
    """
    Write every report figure into a directory.

    Args:
        matrix: Untransformed expression matrix
        log_matrix: Filtered, log-transformed expression matrix
        results: Output of differential_expression
        treatment: Treatment sample identifiers
        control: Control sample identifiers
        output_path: Directory for the figures
        pseudocount: Pseudocount used for the transform
        alpha: Adjusted p-value cutoff
        fold_change_cutoff: Fold change cutoff
        top_n: Maximum number of genes in the heatmap
        file_format: Image format
        dpi: Resolution of the saved figures

    Returns:
        List of written figure paths
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)
    groups = sample_group_map(matrix, treatment, control)

    written = [
        plot_qc_boxplot(matrix, groups, output_path / f"qc_boxplot.{file_format}", dpi=dpi),
        plot_qc_density(matrix, groups, output_path / f"qc_density_plot.{file_format}",
                        pseudocount=pseudocount, dpi=dpi),
    ]

    if results.height > 0:
        written.append(plot_volcano(
            results,
            output_path / f"volcano_plot.{file_format}",
            alpha=alpha,
            fold_change_cutoff=fold_change_cutoff,
            dpi=dpi
        ))
        heatmap = plot_expression_heatmap(
            log_matrix,
            results,
            treatment,
            control,
            output_path / f"expression_heatmap.{file_format}",
            top_n=top_n,
            dpi=dpi
        )
        if heatmap is not None:
            written.append(heatmap)
    else:
        logger.info("No tested genes, skipping volcano plot and heatmap")

    for path in written:
        logger.info(f"Saved: {path}")

    return written

"""
Differential Expression Pipeline
================================

A Python package for two-group differential gene expression analysis.
"""

from .pipeline import DifferentialExpressionPipeline
from .config import PipelineConfig
from .errors import FormatError, ConfigurationError
from .data import (
    load_expression_matrix as load_expression_matrix,
    resolve_sample_groups as resolve_sample_groups,
    compute_sample_qc as compute_sample_qc,
    log_transform as log_transform,
    filter_low_expression as filter_low_expression,
    preprocess as preprocess,
)
from .stats import (
    differential_expression as differential_expression,
    benjamini_hochberg as benjamini_hochberg,
    cohens_d as cohens_d,
    two_sample_ttest as two_sample_ttest,
    classify_gene as classify_gene,
    summarise_regulation as summarise_regulation,
)
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "DifferentialExpressionPipeline",
    "PipelineConfig",
    "FormatError",
    "ConfigurationError",
    "load_expression_matrix",
    "resolve_sample_groups",
    "compute_sample_qc",
    "log_transform",
    "filter_low_expression",
    "preprocess",
    "differential_expression",
    "benjamini_hochberg",
    "cohens_d",
    "two_sample_ttest",
    "classify_gene",
    "summarise_regulation",
    "setup_logging",
    "ensure_dir",
]

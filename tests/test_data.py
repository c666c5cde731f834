"""Tests for loading, validation and preprocessing."""

import math

import numpy as np
import polars as pl
import pytest
from polars.testing import assert_frame_equal

from diffexpr.data import (
    compute_sample_qc,
    filter_low_expression,
    load_expression_matrix,
    log_transform,
    preprocess,
    resolve_sample_groups,
    sample_columns,
)
from diffexpr.errors import ConfigurationError, FormatError


def write_csv(path, text):
    path.write_text(text)
    return path


@pytest.fixture
def expression_file(tmp_path):
    """Create a small count table."""
    return write_csv(tmp_path / "counts.csv", (
        "gene_id,sample1,sample2,control1,control2\n"
        "gene1,10,12,2,3\n"
        "gene2,0,1,0,3\n"
        "gene3,100,120,200,210\n"
    ))


@pytest.fixture
def matrix():
    return pl.DataFrame({
        'gene_id': ['gene1', 'gene2', 'gene3'],
        'sample1': [10.0, 1.0, 100.0],
        'sample2': [12.0, 1.0, 120.0],
        'control1': [2.0, 1.0, 200.0],
        'control2': [3.0, 1.0, 210.0],
    })


def test_load_expression_matrix(expression_file):
    df = load_expression_matrix(expression_file)

    assert df.columns == ['gene_id', 'sample1', 'sample2', 'control1', 'control2']
    assert df['gene_id'].to_list() == ['gene1', 'gene2', 'gene3']
    assert all(df[col].dtype == pl.Float64 for col in sample_columns(df))
    assert df['sample2'].to_list() == [12.0, 1.0, 120.0]


def test_load_custom_id_column_is_moved_first(tmp_path):
    path = write_csv(tmp_path / "counts.csv", (
        "sample1,symbol,control1\n"
        "1.5,TP53,2\n"
        "1e3,BRCA1, 7 \n"
    ))
    df = load_expression_matrix(path, id_column='symbol')

    assert df.columns == ['symbol', 'sample1', 'control1']
    assert df['sample1'].to_list() == [1.5, 1000.0]
    assert df['control1'].to_list() == [2.0, 7.0]


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_expression_matrix(tmp_path / "absent.csv")


def test_load_missing_id_column(expression_file):
    with pytest.raises(FormatError, match="Identifier column 'gene' not found"):
        load_expression_matrix(expression_file, id_column='gene')


def test_load_duplicate_ids(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\ng1,1,2\ng2,3,4\ng1,5,6\n")
    with pytest.raises(FormatError, match="Duplicate gene identifiers: g1"):
        load_expression_matrix(path)


def test_load_duplicate_sample_columns(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s1,c1\ng1,1,2,3\n")
    with pytest.raises(FormatError, match="Duplicate sample identifiers: s1"):
        load_expression_matrix(path)


def test_load_empty_id(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\ng1,1,2\n,3,4\n")
    with pytest.raises(FormatError, match="Empty gene identifiers"):
        load_expression_matrix(path)


def test_load_non_numeric(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\ng1,1,2\ng2,high,4\n")
    with pytest.raises(FormatError, match="Non-numeric values in sample column 's1': high"):
        load_expression_matrix(path)


def test_load_missing_value(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\ng1,1,\ng2,3,4\n")
    with pytest.raises(FormatError, match="Missing values"):
        load_expression_matrix(path)


def test_load_negative_value(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\ng1,1,2\ng2,-3,4\n")
    with pytest.raises(FormatError, match="Negative expression values"):
        load_expression_matrix(path)


def test_load_no_sample_columns(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id\ng1\ng2\n")
    with pytest.raises(FormatError, match="No sample columns"):
        load_expression_matrix(path)


def test_load_no_genes(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "gene_id,s1,s2\n")
    with pytest.raises(FormatError, match="contains no genes"):
        load_expression_matrix(path)


def test_load_empty_file(tmp_path):
    path = write_csv(tmp_path / "counts.csv", "")
    with pytest.raises(FormatError):
        load_expression_matrix(path)


def test_resolve_sample_groups(matrix):
    treatment, control = resolve_sample_groups(matrix, ('sample1', 'sample2'), ['control1'])
    assert treatment == ['sample1', 'sample2']
    assert control == ['control1']


@pytest.mark.parametrize("treatment, control, message", [
    ([], ['control1'], "'treatment' is empty"),
    (['sample1'], [], "'control' is empty"),
    (['sample1', 'sample9'], ['control1'], "absent from the expression table: sample9"),
    (['sample1', 'control1'], ['control1', 'control2'], "both groups: control1"),
    (['sample1', 'sample1'], ['control1'], "more than once: sample1"),
])
def test_resolve_sample_groups_errors(matrix, treatment, control, message):
    with pytest.raises(ConfigurationError, match=message):
        resolve_sample_groups(matrix, treatment, control)


def test_compute_sample_qc(matrix):
    qc = compute_sample_qc(matrix, treatment=['sample1', 'sample2'], control=['control1'])

    assert qc.columns == ['sample', 'group', 'mean_expr', 'median_expr', 'sd_expr', 'cv']
    assert qc['sample'].to_list() == ['sample1', 'sample2', 'control1', 'control2']
    assert qc['group'].to_list() == ['Treatment', 'Treatment', 'Control', 'Unassigned']

    row = qc.row(0, named=True)
    values = np.array([10.0, 1.0, 100.0])
    assert row['mean_expr'] == pytest.approx(values.mean())
    assert row['median_expr'] == pytest.approx(10.0)
    assert row['sd_expr'] == pytest.approx(values.std(ddof=1))
    assert row['cv'] == pytest.approx(values.std(ddof=1) / values.mean() * 100)


def test_compute_sample_qc_zero_mean():
    df = pl.DataFrame({'gene_id': ['g1', 'g2'], 's1': [0.0, 0.0]})
    qc = compute_sample_qc(df)
    assert qc['sd_expr'][0] == 0.0
    assert math.isnan(qc['cv'][0])


def test_log_transform(matrix):
    log_df = log_transform(matrix, pseudocount=1.0)

    assert log_df.columns == matrix.columns
    assert log_df['gene_id'].to_list() == matrix['gene_id'].to_list()
    assert log_df['sample1'].to_list() == pytest.approx(np.log2([11.0, 2.0, 101.0]).tolist())
    assert log_df['control2'][0] == pytest.approx(2.0)


def test_log_transform_pseudocount():
    df = pl.DataFrame({'gene_id': ['g1'], 's1': [0.0], 's2': [3.5]})
    log_df = log_transform(df, pseudocount=0.5)
    assert log_df['s1'][0] == pytest.approx(-1.0)
    assert log_df['s2'][0] == pytest.approx(2.0)


def test_filter_low_expression(matrix):
    log_df = log_transform(matrix)
    filtered, n_dropped = filter_low_expression(log_df, threshold=4.0)

    assert filtered['gene_id'].to_list() == ['gene3']
    assert n_dropped == 2
    assert filtered.columns == log_df.columns


def test_filter_is_strict(matrix):
    # gene2 mean of log2(x + 1) is exactly 1.0
    log_df = log_transform(matrix)
    filtered, _ = filter_low_expression(log_df, threshold=1.0)
    assert 'gene2' not in filtered['gene_id'].to_list()


def test_filter_negative_infinity_returns_input(matrix):
    log_df = log_transform(matrix)
    filtered, n_dropped = filter_low_expression(log_df, threshold=float('-inf'))

    assert n_dropped == 0
    assert_frame_equal(filtered, log_df)


def test_preprocess_all_filtered(matrix):
    filtered, n_dropped = preprocess(matrix, pseudocount=1.0, threshold=100.0)

    assert filtered.height == 0
    assert n_dropped == matrix.height
    assert filtered.columns == matrix.columns


def test_preprocess_preserves_gene_order(matrix):
    filtered, n_dropped = preprocess(matrix, pseudocount=1.0, threshold=0.0)
    assert filtered['gene_id'].to_list() == ['gene1', 'gene2', 'gene3']
    assert n_dropped == 0

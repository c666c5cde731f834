#!/usr/bin/env python3
"""
Generate a mock 50 gene x 6 sample count table and run the pipeline on it.
"""

import logging
import time
from pathlib import Path

import numpy as np
import polars as pl
from tomli_w import dump

from diffexpr import DifferentialExpressionPipeline
from diffexpr.utils import setup_logging

EXAMPLE_DIR = Path("example")
TREATMENT = ["sample1", "sample2", "sample3"]
CONTROL = ["control1", "control2", "control3"]


def make_mock_data(n_genes: int = 50, seed: int = 123) -> pl.DataFrame:
    """Negative binomial counts with ten up- and ten down-regulated genes."""
    rng = np.random.default_rng(seed)
    base_means = rng.lognormal(mean=5.0, sigma=1.2, size=n_genes)

    fold_changes = np.ones(n_genes)
    fold_changes[:10] = 4.0
    fold_changes[10:20] = 0.25

    # Dispersion of 0.05 gives moderate biological variability
    size = 1 / 0.05
    columns = {'gene_id': [f"GENE{i + 1:03d}" for i in range(n_genes)]}
    for sample in TREATMENT + CONTROL:
        mu = base_means * (fold_changes if sample in TREATMENT else 1.0)
        columns[sample] = rng.negative_binomial(size, size / (size + mu)).tolist()

    return pl.DataFrame(columns)


def write_example(example_dir: Path = EXAMPLE_DIR) -> Path:
    """Write the mock table and its configuration, returning the config path."""
    example_dir.mkdir(parents=True, exist_ok=True)
    data_file = example_dir / "mock_expression_data.csv"
    make_mock_data().write_csv(data_file)

    config = {
        'input': {'expression_file': str(data_file), 'id_column': 'gene_id'},
        'groups': {'treatment': TREATMENT, 'control': CONTROL},
        'analysis': {
            'pseudocount': 1.0,
            'filter_threshold': 4.0,
            'alpha': 0.05,
            'fold_change_cutoff': 1.0,
        },
        'output': {'directory': 'results'},
        'plots': {'enabled': True, 'format': 'png', 'dpi': 150, 'top_genes': 20},
    }
    config_path = example_dir / "config.toml"
    with open(config_path, 'wb') as f:
        dump(config, f)
    return config_path


def run_pipeline():
    setup_logging(Path("results/logs"), level=logging.INFO)

    config_path = write_example()
    logging.info(f"Using config file: {config_path.absolute()}")

    start = time.time()
    pipeline = DifferentialExpressionPipeline(config_path)
    results = pipeline.run()

    print(results.head(10))
    print(f"Finished in {time.time() - start:.2f} seconds")


if __name__ == "__main__":
    run_pipeline()

"""Main pipeline implementation for differential expression analysis."""

import json
import logging
import math
import platform
import sys
import time
from importlib import metadata
from pathlib import Path
from typing import Optional, Union

import polars as pl

from .config import PipelineConfig
from .data import (
    compute_sample_qc,
    load_expression_matrix,
    preprocess,
    resolve_sample_groups,
    sample_columns,
)
from .stats import (
    RESULT_COLUMNS,
    differential_expression,
    summarise_regulation,
)
from .utils import ensure_dir

RESULTS_FILE = 'differential_expression_results.csv'
QC_FILE = 'sample_qc_statistics.csv'
CONFIG_FILE = 'pipeline_config.json'
SESSION_FILE = 'session_info.txt'

REPORTED_PACKAGES = [
    'polars', 'numpy', 'numba', 'scipy', 'statsmodels',
    'pandas', 'matplotlib', 'seaborn', 'tqdm', 'tomli', 'tomli-w',
]


def _json_safe(item):
    """Replace non-finite floats, which JSON cannot represent."""
    if isinstance(item, dict):
        return {k: _json_safe(v) for k, v in item.items()}
    if isinstance(item, list):
        return [_json_safe(i) for i in item]
    if isinstance(item, float) and not math.isfinite(item):
        return str(item)
    return item


class DifferentialExpressionPipeline:
    """Main class for running a two-group differential expression analysis."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the pipeline with a configuration file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config = PipelineConfig(config_path)
        self.logger = logging.getLogger(__name__)
        self.results = None
        self._load_input_data()

    def _load_input_data(self):
        """Load the expression table and validate the sample groups against it."""
        self.logger.debug("Starting to load input data files")

        expression_file = Path(self.config.input_files['expression_file'])
        if not expression_file.is_file():
            error_msg = f"Input file not found: {expression_file} (specified as expression_file)"
            self.logger.error(error_msg)
            raise FileNotFoundError(error_msg)

        self.expression_df = load_expression_matrix(expression_file, id_column=self.config.id_column)
        self.treatment, self.control = resolve_sample_groups(
            self.expression_df,
            self.config.treatment_samples,
            self.config.control_samples
        )

        self.logger.info(
            f"Dataset dimensions: {self.expression_df.height} genes x "
            f"{len(sample_columns(self.expression_df))} samples"
        )
        self.logger.info(f"Treatment samples: {', '.join(self.treatment)}")
        self.logger.info(f"Control samples: {', '.join(self.control)}")
        self.logger.debug("Finished loading input data files")

    def run(self) -> pl.DataFrame:
        """Run the differential expression pipeline and save its outputs.

        Returns:
            The differential expression results
        """
        self.logger.info("Starting differential expression analysis pipeline")
        start_time = time.time()

        self.logger.info("Step 1: Performing quality control checks")
        self.sample_qc = compute_sample_qc(self.expression_df, self.treatment, self.control)
        for row in self.sample_qc.iter_rows(named=True):
            self.logger.debug(
                f"{row['sample']} ({row['group']}): mean={row['mean_expr']:.2f} "
                f"median={row['median_expr']:.2f} sd={row['sd_expr']:.2f} cv={row['cv']:.1f}%"
            )

        self.logger.info("Step 2: Preprocessing data")
        self.log_expression_df, self.n_filtered = preprocess(
            self.expression_df,
            pseudocount=self.config.pseudocount,
            threshold=self.config.filter_threshold
        )

        self.logger.info("Step 3: Performing differential expression analysis")
        n_tests = self.expression_df.height if self.config.fdr_scope == "input" else None
        self.results = differential_expression(
            self.log_expression_df,
            self.treatment,
            self.control,
            alpha=self.config.alpha,
            fold_change_cutoff=self.config.fold_change_cutoff,
            equal_var=self.config.equal_var,
            n_tests=n_tests,
            show_progress=self.config.show_progress
        )

        self.logger.info(
            f"Significance thresholds: p_adjusted < {self.config.alpha}, "
            f"|log2FC| > {self.config.fold_change_cutoff}"
        )
        for row in summarise_regulation(self.results).iter_rows(named=True):
            self.logger.info(f"{row['regulation']}: {row['count']}")

        self.logger.info("Step 4: Saving results")
        self.save_results()

        elapsed_time = time.time() - start_time
        self.logger.info(f"Pipeline completed in {elapsed_time:.2f} seconds")
        return self.results

    def save_results(self, output_dir: Optional[Union[str, Path]] = None):
        """Save analysis results.

        Args:
            output_dir: Optional output directory path. If not provided,
                        uses the directory from the configuration.
        """
        if self.results is None:
            self.logger.warning("No results to save. Run the pipeline first.")
            return

        output_path = Path(output_dir) if output_dir is not None else self.config.get_output_path()
        data_path = ensure_dir(output_path / 'data')

        # 1. Differential expression table
        results_file = data_path / RESULTS_FILE
        self.results.select(RESULT_COLUMNS).write_csv(results_file)
        self.logger.info(f"Saved results to {results_file}")

        # 2. Sample QC statistics
        qc_file = data_path / QC_FILE
        self.sample_qc.write_csv(qc_file)
        self.logger.info(f"Saved sample QC statistics to {qc_file}")

        # 3. Effective configuration
        config_file = data_path / CONFIG_FILE
        with open(config_file, 'w') as f:
            config_dict = self.config.to_dict()
            config_dict['run'] = {
                'genes_loaded': self.expression_df.height,
                'genes_filtered_out': self.n_filtered,
                'genes_tested': self.results.height,
            }
            json.dump(_json_safe(config_dict), f, indent=2)
        self.logger.info(f"Saved configuration to {config_file}")

        # 4. Session information
        session_file = data_path / SESSION_FILE
        with open(session_file, 'w') as f:
            f.write(f"Python {sys.version}\n")
            f.write(f"Platform: {platform.platform()}\n\n")
            for package in REPORTED_PACKAGES:
                try:
                    version = metadata.version(package)
                except metadata.PackageNotFoundError:
                    version = "not installed"
                f.write(f"{package}: {version}\n")
        self.logger.info(f"Saved session information to {session_file}")

        # 5. Figures
        figures = []
        if self.config.plots_enabled:
            # Imported here so that runs without plots do not need a plotting backend
            from .visualise import create_report_plots

            figures = create_report_plots(
                self.expression_df,
                self.log_expression_df,
                self.results,
                self.treatment,
                self.control,
                ensure_dir(output_path / 'plots'),
                pseudocount=self.config.pseudocount,
                alpha=self.config.alpha,
                fold_change_cutoff=self.config.fold_change_cutoff,
                top_n=self.config.top_genes,
                file_format=self.config.plot_format,
                dpi=self.config.plot_dpi
            )

        # 6. README describing the output files
        readme_file = output_path / 'README.md'
        with open(readme_file, 'w') as f:
            f.write("# Differential Expression Analysis Results\n\n")
            f.write(f"Analysis completed on {time.strftime('%Y-%m-%d %H:%M:%S')}\n\n")
            f.write(f"- Genes loaded: {self.expression_df.height}\n")
            f.write(f"- Genes removed by the expression filter: {self.n_filtered}\n")
            f.write(f"- Genes tested: {self.results.height}\n\n")

            f.write("## Files\n\n")
            f.write(f"- `data/{RESULTS_FILE}`: Per-gene statistics sorted by adjusted p-value\n")
            f.write(f"- `data/{QC_FILE}`: Per-sample summary statistics of the raw counts\n")
            f.write(f"- `data/{CONFIG_FILE}`: Configuration used for this analysis\n")
            f.write(f"- `data/{SESSION_FILE}`: Software versions\n")
            for figure in figures:
                f.write(f"- `plots/{figure.name}`\n")
        self.logger.info(f"Saved README to {readme_file}")

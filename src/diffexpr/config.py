"""Configuration handling for the differential expression pipeline."""

import math
import tomli
import tomli_w
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError

FDR_SCOPES = ("tested", "input")
PLOT_FORMATS = ("png", "pdf", "svg")


class PipelineConfig:
    """Configuration class for the differential expression pipeline."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = config_path

        # Load configuration file
        try:
            with open(config_path, "rb") as f:
                self.config = tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Error loading configuration file: {config_path} does not exist")
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Error loading configuration file: {str(e)}")

        # Validate required sections
        required_sections = ['input', 'groups', 'output']
        missing_sections = [section for section in required_sections if section not in self.config]
        if missing_sections:
            raise ConfigurationError(f"Missing required sections in configuration: {', '.join(missing_sections)}")

        # Input table
        self.input_files = self.config.get("input", {})
        if 'expression_file' not in self.input_files:
            raise ConfigurationError("Missing required input file in configuration: expression_file")
        self.id_column = self.input_files.get("id_column", "gene_id")

        # Sample groups
        groups = self.config.get("groups", {})
        self.treatment_samples = self._sample_list(groups, "treatment")
        self.control_samples = self._sample_list(groups, "control")

        # Output configuration
        self.output_config = self.config.get("output", {})

        # Analysis parameters, all optional
        self.analysis_params = self.config.get("analysis", {})
        self.pseudocount = self._number(self.analysis_params, "pseudocount", 1.0)
        self.filter_threshold = self._number(self.analysis_params, "filter_threshold", 4.0)
        self.alpha = self._number(self.analysis_params, "alpha", 0.05)
        self.fold_change_cutoff = self._number(self.analysis_params, "fold_change_cutoff", 1.0)
        self.equal_var = self._flag(self.analysis_params, "equal_var", True)
        self.fdr_scope = self.analysis_params.get("fdr_scope", "tested")
        self.show_progress = self._flag(self.analysis_params, "show_progress", False)

        if self.pseudocount <= 0:
            raise ConfigurationError(f"pseudocount must be positive, got {self.pseudocount}")
        if not 0 < self.alpha < 1:
            raise ConfigurationError(f"alpha must lie between 0 and 1, got {self.alpha}")
        if self.fold_change_cutoff < 0:
            raise ConfigurationError(f"fold_change_cutoff must not be negative, got {self.fold_change_cutoff}")
        if self.fdr_scope not in FDR_SCOPES:
            raise ConfigurationError(
                f"Unknown fdr_scope '{self.fdr_scope}', expected one of: {', '.join(FDR_SCOPES)}"
            )

        # Plot settings
        self.plot_config = self.config.get("plots", {})
        self.plots_enabled = self._flag(self.plot_config, "enabled", True)
        self.plot_format = self.plot_config.get("format", "png")
        self.plot_dpi = int(self._number(self.plot_config, "dpi", 300))
        self.top_genes = int(self._number(self.plot_config, "top_genes", 20))
        if self.plot_format not in PLOT_FORMATS:
            raise ConfigurationError(
                f"Unknown plot format '{self.plot_format}', expected one of: {', '.join(PLOT_FORMATS)}"
            )

    @staticmethod
    def _sample_list(groups: Dict[str, Any], name: str) -> List[str]:
        """Read one sample group as a list of strings."""
        samples = groups.get(name)
        if samples is None:
            raise ConfigurationError(f"Missing sample group in configuration: {name}")
        if isinstance(samples, str) or not isinstance(samples, list):
            raise ConfigurationError(f"Sample group '{name}' must be a list of sample identifiers")
        return [str(s) for s in samples]

    @staticmethod
    def _flag(section: Dict[str, Any], key: str, default: bool) -> bool:
        """Read a boolean setting; strings such as "false" are rejected."""
        value = section.get(key, default)
        if not isinstance(value, bool):
            raise ConfigurationError(f"Setting '{key}' must be true or false, got {value!r}")
        return value

    @staticmethod
    def _number(section: Dict[str, Any], key: str, default: float) -> float:
        """Read a numeric setting, accepting integers and floats only."""
        value = section.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"Setting '{key}' must be numeric, got {value!r}")
        value = float(value)
        if math.isnan(value):
            raise ConfigurationError(f"Setting '{key}' must not be NaN")
        return value

    def get_output_path(self, subdir: Optional[str] = None) -> Path:
        """Get the path to the output directory or a subdirectory within it.

        Args:
            subdir: Optional subdirectory name within the output directory

        Returns:
            Path object for the requested directory
        """
        base_path = Path(self.output_config.get("directory", "results"))

        if subdir:
            return base_path / subdir

        return base_path

    def to_dict(self) -> Dict[str, Any]:
        """Effective settings, defaults included, as plain JSON-friendly values."""
        return {
            'input': {
                'expression_file': str(self.input_files['expression_file']),
                'id_column': self.id_column,
            },
            'groups': {
                'treatment': list(self.treatment_samples),
                'control': list(self.control_samples),
            },
            'analysis': {
                'pseudocount': self.pseudocount,
                'filter_threshold': self.filter_threshold,
                'alpha': self.alpha,
                'fold_change_cutoff': self.fold_change_cutoff,
                'equal_var': self.equal_var,
                'fdr_scope': self.fdr_scope,
            },
            'output': {'directory': str(self.get_output_path())},
            'plots': {
                'enabled': self.plots_enabled,
                'format': self.plot_format,
                'dpi': self.plot_dpi,
                'top_genes': self.top_genes,
            },
        }

    def save_config(self, output_path: Union[str, Path]) -> None:
        """Save the configuration to a TOML file.

        Args:
            output_path: Path to save the configuration file
        """
        with open(output_path, "wb") as f:
            tomli_w.dump(self.config, f)

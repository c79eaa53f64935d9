"""
Configuration management for the differential analysis pipeline.

Supports loading configurations from YAML files for:
- Dataset specifications (array type, files, grouping, annotation policy)
- Analysis parameters (filtering, normalization, model, significance)
- Visualization settings
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..exceptions import ConfigError

ANNOTATION_POLICIES = ("strict", "tolerant")
RAW_LAYOUTS = ("per_sample", "matrix")


class Config:
    """
    Central configuration class for the differential analysis pipeline.

    Each dataset carries its own array type, raw file layout, grouping
    covariate and annotation coverage policy, so the expression and
    methylation analyses run through the same code with explicit settings.

    Attributes:
        base_dir: Root directory of the project
        data_dir: Directory containing input data
        output_dir: Directory for results and figures
        dataset: Current dataset configuration
        analysis_params: Filtering, normalization and model parameters
        viz_params: Visualization settings
    """

    def __init__(
        self,
        config_file: Optional[str] = None,
        dataset: str = "ad_neurons",
        base_dir: Optional[Path] = None
    ):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML config file. If None, uses defaults.
            dataset: Name of dataset to use (e.g., "ad_neurons", "induced_neurons")
            base_dir: Project root; defaults to the repository root
        """
        self.base_dir = Path(base_dir) if base_dir else Path(__file__).parent.parent.parent
        self.dataset_name = dataset

        self._init_defaults()

        # Dataset first, so a user config file can override parts of it
        self._load_dataset_config(dataset)

        if config_file:
            self._load_yaml(config_file)

        self._validate()

    def _init_defaults(self):
        """Initialize default configuration values."""
        # Directories
        self.data_dir = self.base_dir / "data"
        self.output_dir = self.base_dir / "results"
        self.figures_dir = self.output_dir / "plots"
        self.tables_dir = self.output_dir / "tables"

        self.analysis_params = {
            "detection_threshold": 0.01,
            "min_pass_fraction": 1.0,
            "background_correct": True,
            "summarize": True,
            "methylation_offset": 100.0,
            "m_value_alpha": 1.0,
            "eb_trend": False,
            "adjust_method": "BH",
            "fdr": 0.05,
            "lfc": 0.0,
        }

        self.viz_params = {
            "dpi": 300,
            "format": "pdf",
            "figure_sizes": {
                "single": (6, 5),
                "wide": (8, 6),
                "tall": (6, 8)
            },
            "font_sizes": {
                "title": 12,
                "label": 11,
                "tick": 10,
                "legend": 9
            },
            "colors": {
                "up": "#e74c3c",
                "down": "#3498db",
                "not_significant": "#bdc3c7",
                "histogram": "#9b59b6",
                "threshold": "#2ecc71"
            }
        }

    def _load_yaml(self, config_file: str):
        """Load configuration from YAML file."""
        config_path = Path(config_file)
        if not config_path.is_absolute():
            config_path = self.base_dir / config_file

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        self._update_from_dict(config_data)

    def _load_dataset_config(self, dataset: str):
        """Load dataset-specific configuration."""
        dataset_config_path = self.base_dir / "configs" / "datasets" / f"{dataset}.yaml"

        if dataset_config_path.exists():
            with open(dataset_config_path, 'r') as f:
                self.dataset = yaml.safe_load(f) or {}
        else:
            self.dataset = self._get_default_dataset_config(dataset)

        if "analysis_params" in self.dataset:
            self.analysis_params.update(self.dataset["analysis_params"])

    def _get_default_dataset_config(self, dataset: str) -> Dict[str, Any]:
        """Get default configuration for known datasets."""
        datasets = {
            "ad_neurons": {
                "name": "ad_neurons",
                "description": "Laser-captured neurons from Alzheimer's disease and control brains",
                "array_type": "expression",
                "raw_layout": "per_sample",
                "raw_suffix": ".txt",
                "raw_columns": {
                    "probe": "ID_REF",
                    "value": "VALUE",
                    "detection": "Detection Pval",
                    "call": "ABS_CALL"
                },
                "files": {
                    "raw_dir": "data/raw/ad_neurons",
                    "metadata": "data/metadata/ad_neurons_samples.tsv",
                    "annotation": "data/annotation/HG-U133_Plus_2.annot.tsv"
                },
                "metadata_columns": {
                    "sample_id": "sample_id",
                    "disease_state": "disease_state"
                },
                "group": {
                    "covariate": "disease_state",
                    "levels": ["AD", "Control"],
                    "numerator": "AD",
                    "denominator": "Control"
                },
                "annotation": {
                    "skip_rows": 25,
                    "sep": "\t",
                    "columns": {
                        "probe_id": "Probe Set ID",
                        "gene_symbol": "Gene Symbol",
                        "chromosome": "Chromosome",
                        "position": "Start",
                        "feature_type": "Sequence Type"
                    },
                    "policy": "strict",
                    "max_missing_fraction": 0.0
                },
                "exclude_probe_prefixes": ["AFFX"],
                "analysis_params": {
                    "min_pass_fraction": 0.5
                }
            },
            "induced_neurons": {
                "name": "induced_neurons",
                "description": "DNA methylation of fibroblast-derived induced neurons",
                "array_type": "methylation",
                "raw_layout": "per_sample",
                "raw_suffix": ".txt",
                "raw_columns": {
                    "probe": "ID_REF",
                    "methylated": "Methylated signal",
                    "unmethylated": "Unmethylated signal",
                    "detection": "Detection Pval"
                },
                "files": {
                    "raw_dir": "data/raw/induced_neurons",
                    "metadata": "data/metadata/induced_neurons_samples.tsv",
                    "annotation": "data/annotation/EPIC_manifest.tsv"
                },
                "metadata_columns": {
                    "sample_id": "sample_id",
                    "disease_state": "disease_state"
                },
                "group": {
                    "covariate": "disease_state",
                    "levels": ["AD", "Control"],
                    "numerator": "AD",
                    "denominator": "Control"
                },
                "annotation": {
                    "skip_rows": 7,
                    "sep": "\t",
                    "columns": {
                        "probe_id": "IlmnID",
                        "gene_symbol": "UCSC_RefGene_Name",
                        "chromosome": "CHR",
                        "position": "MAPINFO",
                        "feature_type": "UCSC_RefGene_Group"
                    },
                    "policy": "tolerant",
                    "max_missing_fraction": 0.5
                },
                "exclude_probe_prefixes": ["rs", "ch."]
            }
        }
        if dataset not in datasets:
            raise ConfigError(
                f"Unknown dataset '{dataset}' and no configs/datasets/{dataset}.yaml. "
                f"Built-in datasets: {sorted(datasets)}"
            )
        dataset_config = copy.deepcopy(datasets[dataset])
        return dataset_config

    def _update_from_dict(self, config_dict: Dict[str, Any]):
        """Update configuration from dictionary."""
        if "analysis_params" in config_dict:
            self.analysis_params.update(config_dict["analysis_params"])
        if "viz_params" in config_dict:
            self.viz_params.update(config_dict["viz_params"])
        if "dataset" in config_dict:
            for key, value in config_dict["dataset"].items():
                if isinstance(value, dict) and isinstance(self.dataset.get(key), dict):
                    self.dataset[key].update(value)
                else:
                    self.dataset[key] = value

    def _validate(self):
        """Reject configurations the pipeline cannot run."""
        array_type = self.dataset.get("array_type")
        if array_type not in ("expression", "methylation"):
            raise ConfigError(f"Dataset '{self.dataset_name}' has invalid array_type: {array_type}")

        layout = self.dataset.get("raw_layout", "per_sample")
        if layout not in RAW_LAYOUTS:
            raise ConfigError(f"Unknown raw_layout '{layout}', expected one of {RAW_LAYOUTS}")

        policy = self.annotation_params.get("policy")
        if policy not in ANNOTATION_POLICIES:
            raise ConfigError(
                f"Dataset '{self.dataset_name}' must declare an annotation policy "
                f"{ANNOTATION_POLICIES}, got: {policy}"
            )

        group = self.group_params
        for key in ("covariate", "numerator", "denominator"):
            if not group.get(key):
                raise ConfigError(f"Dataset '{self.dataset_name}' group config lacks '{key}'")

        threshold = self.analysis_params["detection_threshold"]
        if not 0 < threshold <= 1:
            raise ConfigError(f"detection_threshold must be in (0, 1], got {threshold}")
        fraction = self.analysis_params["min_pass_fraction"]
        if not 0 <= fraction <= 1:
            raise ConfigError(f"min_pass_fraction must be in [0, 1], got {fraction}")

    @property
    def array_type(self) -> str:
        return self.dataset["array_type"]

    @property
    def group_params(self) -> Dict[str, Any]:
        return self.dataset.get("group", {})

    @property
    def annotation_params(self) -> Dict[str, Any]:
        return self.dataset.get("annotation", {})

    def get_data_path(self, file_key: str) -> Path:
        """Get full path for a data file."""
        if file_key in self.dataset.get("files", {}):
            path = Path(self.dataset["files"][file_key])
            return path if path.is_absolute() else self.base_dir / path
        return self.data_dir / file_key

    def get_output_path(self, filename: str, subdir: str = "plots") -> Path:
        """Get output path for results."""
        if subdir == "plots":
            return self.figures_dir / filename
        elif subdir == "tables":
            return self.tables_dir / filename
        return self.output_dir / subdir / filename

    def set_output_dir(self, output_dir: Path):
        """Redirect all outputs below a new directory."""
        self.output_dir = Path(output_dir)
        self.figures_dir = self.output_dir / "plots"
        self.tables_dir = self.output_dir / "tables"

    def ensure_output_dirs(self):
        """Create output directories if they don't exist."""
        self.figures_dir.mkdir(parents=True, exist_ok=True)
        self.tables_dir.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return (
            f"Config(dataset='{self.dataset_name}', "
            f"array_type='{self.dataset.get('array_type')}', "
            f"base_dir='{self.base_dir}')"
        )


def load_config(
    config_file: Optional[str] = None,
    dataset: str = "ad_neurons",
    base_dir: Optional[Path] = None
) -> Config:
    """
    Load configuration for the analysis pipeline.

    Args:
        config_file: Path to custom YAML configuration file
        dataset: Dataset name to use
        base_dir: Optional project root override

    Returns:
        Config object with all settings loaded

    Example:
        >>> config = load_config(dataset="induced_neurons")
        >>> config.annotation_params["policy"]
        'tolerant'
    """
    return Config(config_file=config_file, dataset=dataset, base_dir=base_dir)

"""
End-to-end differential analysis for one configured dataset.

Stages pass their outputs explicitly:

    RawArrayData -> QualityFilter -> Normalizer -> DesignBuilder
        -> DifferentialModel -> Annotator -> ResultWriter / PlotGenerator
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd

from .annotation import AnnotationLoader, Annotator
from .containers import (
    ContrastSpec,
    DesignMatrix,
    IntensityMatrix,
    ModelResult,
    RawArrayData,
)
from .data_loaders import RawArrayLoader
from .models import DesignBuilder, DifferentialModel, decide_tests
from .preprocessing import (
    ExpressionNormalizer,
    MethylationNormalizer,
    QualityFilter,
    QualityReport,
    distribution_spread,
)
from .reporting import ResultWriter
from .utils.config import Config
from .visualization import PlotGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Everything a run produced, for inspection after the fact."""

    raw: RawArrayData
    normalized: IntensityMatrix
    design: DesignMatrix
    contrast: ContrastSpec
    result: ModelResult
    calls: pd.Series
    summary: pd.DataFrame
    quality: Optional[QualityReport] = None
    beta: Optional[IntensityMatrix] = None
    outputs: Dict[str, Path] = field(default_factory=dict)


class DifferentialPipeline:
    """
    Run the differential analysis for the dataset a Config describes.

    The array type decides the normalization path: expression arrays are
    modeled on log2 intensities, methylation arrays on M-values with
    delta-beta reported next to the statistics.
    """

    def __init__(self, config: Config, skip_plots: bool = False):
        """
        Initialize pipeline.

        Args:
            config: Loaded configuration
            skip_plots: Do not generate figures
        """
        self.config = config
        self.skip_plots = skip_plots
        self.params = config.analysis_params
        self.writer = ResultWriter()
        self.plotter = PlotGenerator(config)

    def run(
        self,
        raw_path: Optional[Union[str, Path]] = None,
        metadata_path: Optional[Union[str, Path]] = None,
        annotation_path: Optional[Union[str, Path]] = None
    ) -> PipelineResult:
        """
        Run every stage and write the outputs.

        Args:
            raw_path: Raw directory or matrix file; defaults to the config
            metadata_path: Sample metadata table; defaults to the config
            annotation_path: Probe annotation table; defaults to the config

        Returns:
            PipelineResult
        """
        name = self.config.dataset_name
        logger.info("=" * 60)
        logger.info(f"Differential analysis: {name} ({self.config.array_type})")
        logger.info("=" * 60)

        # Step 1: Load
        logger.info("[Step 1] Loading raw data...")
        raw = self.load(raw_path, metadata_path)

        # Step 2: Quality filter
        logger.info("[Step 2] Filtering probes...")
        quality_filter = QualityFilter(
            detection_threshold=self.params["detection_threshold"],
            min_pass_fraction=self.params["min_pass_fraction"],
            exclude_prefixes=self.config.dataset.get("exclude_probe_prefixes"),
        )
        filtered = quality_filter.filter_raw(raw)

        # Step 3: Normalize
        logger.info("[Step 3] Normalizing...")
        normalized, beta = self.normalize(filtered)
        logger.info(
            f"Median spread across samples: "
            f"{distribution_spread(normalized.values):.4f} after normalization"
        )

        # Step 4: Design and contrast
        logger.info("[Step 4] Building design...")
        group = self.config.group_params
        builder = DesignBuilder(group["covariate"], levels=group.get("levels"))
        design = builder.build(raw.samples, normalized.sample_ids)
        contrast = builder.contrast(design, group["numerator"], group["denominator"])

        # Step 5: Fit
        logger.info("[Step 5] Fitting linear models...")
        model = DifferentialModel(
            trend=self.params["eb_trend"],
            adjust_method=self.params["adjust_method"],
        )
        result = model.fit(normalized, design, contrast)
        if beta is not None:
            result = result.with_annotation(self.delta_beta(beta, design, contrast, result))

        # Step 6: Annotate
        logger.info("[Step 6] Annotating results...")
        result = self.annotate(result, annotation_path)

        # Step 7: Report
        logger.info("[Step 7] Writing results...")
        calls = decide_tests(result, p_value=self.params["fdr"], lfc=self.params["lfc"])
        outputs = self.write_outputs(result)
        summary = self.writer.write_summary(
            result, outputs["summary"], p_value=self.params["fdr"], lfc=self.params["lfc"]
        )

        if not self.skip_plots:
            logger.info("[Step 8] Generating plots...")
            outputs.update(self.plot(raw, normalized, design, result, calls))

        logger.info("Pipeline complete")
        return PipelineResult(
            raw=raw,
            normalized=normalized,
            design=design,
            contrast=contrast,
            result=result,
            calls=calls,
            summary=summary,
            quality=quality_filter.report_,
            beta=beta,
            outputs=outputs,
        )

    def load(
        self,
        raw_path: Optional[Union[str, Path]] = None,
        metadata_path: Optional[Union[str, Path]] = None
    ) -> RawArrayData:
        """Load raw arrays and sample metadata."""
        loader = RawArrayLoader.from_config(self.config)
        return loader.load(
            raw_path or self.config.get_data_path("raw_dir"),
            metadata_path or self.config.get_data_path("metadata"),
            column_mapping=self.config.dataset.get("metadata_columns"),
        )

    def normalize(self, raw: RawArrayData):
        """
        Normalize according to the array type.

        Returns:
            Tuple (matrix to model, beta matrix or None)
        """
        if raw.array_type == "expression":
            normalizer = ExpressionNormalizer(
                background=self.params["background_correct"],
                summarize=self.params["summarize"],
            )
            return normalizer.normalize(raw.primary), None

        normalizer = MethylationNormalizer(
            background=self.params["background_correct"],
            offset=self.params["methylation_offset"],
            alpha=self.params["m_value_alpha"],
        )
        methylation = normalizer.normalize(raw)
        return methylation.m_values, methylation.beta

    @staticmethod
    def delta_beta(
        beta: IntensityMatrix,
        design: DesignMatrix,
        contrast: ContrastSpec,
        result: ModelResult
    ) -> pd.DataFrame:
        """Mean beta difference between the contrast groups, per result row."""
        groups = design.group_of()
        values = beta.values.loc[result.row_ids, design.sample_ids]
        numerator = values.loc[:, (groups == contrast.numerator).to_numpy()].mean(axis=1)
        denominator = values.loc[:, (groups == contrast.denominator).to_numpy()].mean(axis=1)
        return pd.DataFrame({"delta_beta": numerator - denominator}, index=result.table.index)

    def annotate(
        self,
        result: ModelResult,
        annotation_path: Optional[Union[str, Path]] = None
    ) -> ModelResult:
        """Join probe annotation under the dataset's coverage policy."""
        if annotation_path is None and "annotation" not in self.config.dataset.get("files", {}):
            logger.info("No annotation configured; results left unannotated")
            return result

        params = self.config.annotation_params
        annotation = AnnotationLoader(self.config).load(
            annotation_path or self.config.get_data_path("annotation"),
            skip_rows=params.get("skip_rows"),
            sep=params.get("sep", "\t"),
            column_mapping=params.get("columns"),
        )
        return Annotator.from_config(self.config).annotate(result, annotation)

    def _prefix(self, result: ModelResult) -> str:
        return f"{self.config.dataset_name}_{result.contrast}"

    def write_outputs(self, result: ModelResult) -> Dict[str, Path]:
        prefix = self._prefix(result)
        top_table = self.writer.write_table(
            result, self.config.get_output_path(f"{prefix}_top_table.csv", subdir="tables")
        )
        return {
            "top_table": top_table,
            "summary": self.config.get_output_path(f"{prefix}_summary.csv", subdir="tables"),
        }

    def plot(
        self,
        raw: RawArrayData,
        normalized: IntensityMatrix,
        design: DesignMatrix,
        result: ModelResult,
        calls: pd.Series
    ) -> Dict[str, Path]:
        """Generate the standard figure set."""
        prefix = self._prefix(result)
        ext = self.plotter.format
        groups = design.group_of()
        paths = {
            key: self.config.get_output_path(f"{prefix}_{key}.{ext}")
            for key in ("pvalue_histogram", "logfc_histogram", "volcano", "md",
                        "density_raw", "density_normalized", "pca")
        }

        self.plotter.plot_pvalue_histogram(result, paths["pvalue_histogram"])
        self.plotter.plot_logfc_histogram(result, paths["logfc_histogram"], lfc=self.params["lfc"])
        self.plotter.plot_volcano(
            result, paths["volcano"], calls, fdr=self.params["fdr"], lfc=self.params["lfc"]
        )
        self.plotter.plot_md(result, paths["md"], calls)
        self.plotter.plot_density(raw.primary, groups, paths["density_raw"],
                                  title="Sample Distributions before Normalization")
        self.plotter.plot_density(normalized, groups, paths["density_normalized"],
                                  title="Sample Distributions after Normalization")
        self.plotter.plot_pca(normalized, groups, paths["pca"])
        return paths

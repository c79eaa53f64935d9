"""
Plotting functions for differential analysis results.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402
from sklearn.decomposition import PCA  # noqa: E402
from sklearn.preprocessing import StandardScaler  # noqa: E402

from ..containers import IntensityMatrix, ModelResult  # noqa: E402
from .style import CALL_STYLES, get_color_palette, setup_publication_style  # noqa: E402

logger = logging.getLogger(__name__)


class PlotGenerator:
    """
    Generate publication-ready plots for differential analysis.
    """

    def __init__(self, config: Optional[Any] = None):
        """
        Initialize plot generator.

        Args:
            config: Configuration object with visualization parameters
        """
        self.config = config
        self.colors = get_color_palette(config)
        self.dpi = 300
        self.format = "pdf"

        # Default figure sizes
        self.fig_sizes = {
            "single": (6, 5),
            "wide": (8, 6),
            "tall": (6, 8)
        }

        if config is not None and hasattr(config, "viz_params"):
            if "figure_sizes" in config.viz_params:
                self.fig_sizes.update(config.viz_params["figure_sizes"])
            self.dpi = config.viz_params.get("dpi", self.dpi)
            self.format = config.viz_params.get("format", self.format)

        # Setup matplotlib style
        setup_publication_style(config)

    def _save(self, fig, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, format=self.format, dpi=self.dpi)
        plt.close(fig)

    def plot_pvalue_histogram(
        self,
        result: ModelResult,
        output_path: Union[str, Path],
        title: Optional[str] = None
    ) -> None:
        """
        Histogram of raw p-values.

        A flat histogram with a spike near zero indicates true effects
        on top of well-calibrated null tests.

        Args:
            result: ModelResult
            output_path: Path to save figure
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating p-value histogram -> {output_path}")

        pvalues = result.table["P.Value"].dropna()

        fig, ax = plt.subplots(figsize=self.fig_sizes["single"])
        ax.hist(
            pvalues, bins=50, range=(0, 1),
            color=self.colors["histogram"],
            alpha=0.7, edgecolor="white"
        )

        # Expected count per bin under the null
        if len(pvalues) > 0:
            ax.axhline(len(pvalues) / 50, color="gray", linestyle="--", lw=1.5,
                       label="Uniform expectation")
            ax.legend(loc="upper right", frameon=True, fancybox=False, edgecolor="black")

        ax.set_xlabel("P-value")
        ax.set_ylabel("Frequency")

        if title is None:
            title = f"P-value Distribution: {result.contrast}"
        ax.set_title(title)
        ax.grid(True, alpha=0.3, linestyle="--", axis="y")

        self._save(fig, output_path)
        logger.info("  P-value histogram saved")

    def plot_logfc_histogram(
        self,
        result: ModelResult,
        output_path: Union[str, Path],
        lfc: float = 0.0,
        title: Optional[str] = None
    ) -> None:
        """
        Histogram of log-fold-changes with optional +/- lfc threshold lines.

        Args:
            result: ModelResult
            output_path: Path to save figure
            lfc: Log-fold-change threshold to display
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating logFC histogram -> {output_path}")

        logfc = result.table["logFC"].dropna()

        fig, ax = plt.subplots(figsize=self.fig_sizes["single"])
        ax.hist(logfc, bins=50, color=self.colors["histogram"], alpha=0.7, edgecolor="white")

        ax.axvline(0, color="black", linestyle=":", lw=1)
        if lfc > 0:
            for x in (-lfc, lfc):
                ax.axvline(x, color=self.colors["threshold"], linestyle="-", lw=2)

        ax.set_xlabel("log2 Fold Change")
        ax.set_ylabel("Frequency")

        if title is None:
            title = f"Fold Change Distribution: {result.contrast}"
        ax.set_title(title)
        ax.grid(True, alpha=0.3, linestyle="--", axis="y")

        self._save(fig, output_path)
        logger.info("  LogFC histogram saved")

    def plot_volcano(
        self,
        result: ModelResult,
        output_path: Union[str, Path],
        calls: pd.Series,
        fdr: float = 0.05,
        lfc: float = 0.0,
        n_labels: int = 10,
        title: Optional[str] = None
    ) -> None:
        """
        Volcano plot: logFC against -log10 raw p-value, colored by call.

        Args:
            result: ModelResult, optionally annotated with gene_symbol
            output_path: Path to save figure
            calls: Significance calls (-1/0/1) indexed like the result
            fdr: Adjusted p-value cutoff behind the calls
            lfc: Log-fold-change cutoff behind the calls
            n_labels: Number of top rows to label
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating volcano plot -> {output_path}")

        df = result.table.dropna(subset=["logFC", "P.Value"]).copy()
        df["neglog10p"] = -np.log10(df["P.Value"].clip(lower=1e-300))
        df["call"] = calls.reindex(df.index).fillna(0)

        fig, ax = plt.subplots(figsize=self.fig_sizes["wide"])

        for call, key, label in CALL_STYLES:
            subset = df[df["call"] == call]
            ax.scatter(
                subset["logFC"], subset["neglog10p"],
                c=self.colors[key], s=8 if call == 0 else 14,
                alpha=0.6, label=f"{label} ({len(subset)})",
                edgecolors="none",
            )

        # Raw p-value of the least significant call approximates the FDR line
        significant = df[df["call"] != 0]
        if len(significant) > 0:
            ax.axhline(significant["neglog10p"].min(), color="#94a3b8", linestyle="--",
                       lw=1, alpha=0.7, label=f"FDR {fdr}")
        if lfc > 0:
            for x in (-lfc, lfc):
                ax.axvline(x, color="#94a3b8", linestyle=":", lw=1, alpha=0.7)

        label_col = "gene_symbol" if "gene_symbol" in df.columns else None
        for probe_id, row in significant.nsmallest(n_labels, "P.Value").iterrows():
            text = row[label_col] if label_col and pd.notna(row[label_col]) else probe_id
            ax.annotate(str(text), (row["logFC"], row["neglog10p"]),
                        fontsize=7, xytext=(3, 3), textcoords="offset points")

        ax.set_xlabel("log2 Fold Change")
        ax.set_ylabel("-log10(P-value)")

        if title is None:
            title = f"Volcano Plot: {result.contrast}"
        ax.set_title(title)

        ax.legend(loc="upper left", frameon=True, fancybox=False, edgecolor="black")
        ax.grid(True, alpha=0.3, linestyle="--")

        self._save(fig, output_path)
        logger.info("  Volcano plot saved")

    def plot_md(
        self,
        result: ModelResult,
        output_path: Union[str, Path],
        calls: pd.Series,
        title: Optional[str] = None
    ) -> None:
        """
        Mean-difference plot: logFC against average expression.

        Args:
            result: ModelResult
            output_path: Path to save figure
            calls: Significance calls (-1/0/1) indexed like the result
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating MD plot -> {output_path}")

        df = result.table.dropna(subset=["logFC", "AveExpr"]).copy()
        df["call"] = calls.reindex(df.index).fillna(0)

        fig, ax = plt.subplots(figsize=self.fig_sizes["wide"])
        for call, key, _ in CALL_STYLES:
            subset = df[df["call"] == call]
            ax.scatter(subset["AveExpr"], subset["logFC"], c=self.colors[key],
                       s=8 if call == 0 else 14, alpha=0.6, edgecolors="none")

        ax.axhline(0, color="black", linestyle=":", lw=1)
        ax.set_xlabel("Average log2 Expression")
        ax.set_ylabel("log2 Fold Change")

        if title is None:
            title = f"Mean-Difference Plot: {result.contrast}"
        ax.set_title(title)
        ax.grid(True, alpha=0.3, linestyle="--")

        self._save(fig, output_path)
        logger.info("  MD plot saved")

    def plot_density(
        self,
        matrix: IntensityMatrix,
        groups: pd.Series,
        output_path: Union[str, Path],
        colors: Optional[Dict[str, str]] = None,
        title: Optional[str] = None
    ) -> None:
        """
        Generate per-sample density plots, colored by group.

        Used before and after normalization to show the samples' value
        distributions being brought into line.

        Args:
            matrix: IntensityMatrix to plot
            groups: Group label per sample id
            output_path: Path to save figure
            colors: Color mapping for groups
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating density plot -> {output_path}")

        if colors is None:
            colors = get_color_palette(self.config, groups=sorted(groups.dropna().unique()))

        values = matrix.values
        if matrix.scale == "raw":
            values = np.log2(values.clip(lower=1.0))

        fig, ax = plt.subplots(figsize=self.fig_sizes["wide"])

        # Plot each sample's density
        plotted_groups = set()
        for sample in matrix.sample_ids:
            group = groups.get(sample, "Unknown")
            data = values[sample].dropna()
            if data.nunique() < 2:
                continue
            color = colors.get(group, "#333333")
            label = group if group not in plotted_groups else None
            plotted_groups.add(group)

            sns.kdeplot(data, color=color, linewidth=1, ax=ax, label=label)

        xlabels = {
            "raw": "log2 Raw Intensity",
            "log2": "log2 Expression",
            "beta": "Methylation Level (Beta)",
            "m_value": "M-value",
        }
        ax.set_xlabel(xlabels[matrix.scale])
        ax.set_ylabel("Density")
        if matrix.scale == "beta":
            ax.set_xlim(0, 1)

        if title is None:
            title = "Sample Distributions"
        ax.set_title(title)

        if plotted_groups:
            ax.legend(loc="best", frameon=True, fancybox=False, edgecolor="black")

        self._save(fig, output_path)
        logger.info("  Density plot saved")

    def plot_pca(
        self,
        matrix: IntensityMatrix,
        groups: pd.Series,
        output_path: Union[str, Path],
        title: Optional[str] = None
    ) -> None:
        """
        Generate PCA scatter plot of samples.

        Args:
            matrix: Normalized IntensityMatrix (rows x samples)
            groups: Group label per sample id
            output_path: Path to save figure
            title: Optional custom title
        """
        output_path = Path(output_path)
        logger.info(f"Generating PCA plot -> {output_path}")

        # Samples as observations; rows with any NaN or no variance are dropped
        X = matrix.values.dropna()
        X = X[X.std(axis=1) > 0].T.to_numpy(dtype=float)
        if X.shape[0] < 3 or X.shape[1] < 2:
            logger.warning("Too few samples or rows for PCA; plot skipped")
            return

        # Standardize and compute PCA
        scaler = StandardScaler()
        X_scaled = scaler.fit_transform(X)

        pca = PCA(n_components=2)
        coords = pca.fit_transform(X_scaled)
        exp_var = pca.explained_variance_ratio_

        # Create DataFrame for plotting
        pca_df = pd.DataFrame(coords, columns=["PC1", "PC2"], index=matrix.sample_ids)
        pca_df["label"] = [groups.get(s, "Unknown") for s in matrix.sample_ids]

        labels = sorted(pca_df["label"].unique())
        colors = get_color_palette(self.config, groups=labels)

        fig, ax = plt.subplots(figsize=self.fig_sizes["single"])

        for label in labels:
            mask = pca_df["label"] == label
            ax.scatter(
                pca_df.loc[mask, "PC1"],
                pca_df.loc[mask, "PC2"],
                c=colors[label],
                s=60,
                alpha=0.7,
                label=label,
                edgecolors="white",
                linewidths=0.5,
            )

        ax.set_xlabel(f"PC1 ({exp_var[0]*100:.1f}%)")
        ax.set_ylabel(f"PC2 ({exp_var[1]*100:.1f}%)")

        if title is None:
            title = "PCA of Samples"
        ax.set_title(title)

        ax.legend(loc="best", frameon=True, fancybox=False, edgecolor="black")
        ax.grid(True, alpha=0.3, linestyle="--")

        self._save(fig, output_path)
        logger.info("  PCA plot saved")

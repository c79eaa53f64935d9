"""End-to-end tests of the differential pipeline and its command line."""

import pandas as pd
import pytest

from conftest import DE_PROBES

from neuroarray.cli import main
from neuroarray.exceptions import IntegrityError
from neuroarray.pipeline import DifferentialPipeline
from neuroarray.utils import Config


def expression_config(tmp_path, files):
    config = Config(dataset="ad_neurons", base_dir=tmp_path)
    config.dataset["files"] = {
        "raw_dir": str(files["raw_dir"]),
        "metadata": str(files["metadata"]),
        "annotation": str(files["annotation"]),
    }
    config.set_output_dir(tmp_path / "results")
    return config


def methylation_config(tmp_path, files):
    config = Config(dataset="induced_neurons", base_dir=tmp_path)
    # Synthetic signals carry no background component
    config.analysis_params["background_correct"] = False
    config.dataset["files"] = {
        "raw_dir": str(files["raw_dir"]),
        "metadata": str(files["metadata"]),
        "annotation": str(files["annotation"]),
    }
    config.set_output_dir(tmp_path / "results")
    return config


class TestExpressionRun:

    @pytest.fixture
    def run(self, tmp_path, expression_files):
        config = expression_config(tmp_path, expression_files)
        return DifferentialPipeline(config).run()

    def test_control_probes_removed(self, run):
        assert not any(p.startswith("AFFX") for p in run.result.row_ids)
        assert run.quality.removed_excluded == 2

    def test_injected_probes_ranked_first(self, run):
        top = run.result.table.nsmallest(12, "P.Value").index
        assert len(set(DE_PROBES) & set(top)) >= 8

    def test_annotation_joined_by_id(self, run):
        table = run.result.table
        assert table.loc["probe_007", "gene_symbol"] == "GENE7"
        assert table.loc["probe_014", "gene_symbol"] == "GENE14"
        assert table.loc["probe_003", "chromosome"] == "chr4"

    def test_top_table_written_sorted(self, run):
        path = run.outputs["top_table"]
        assert path.name == "ad_neurons_AD-Control_top_table.csv"

        table = pd.read_csv(path)
        assert table.columns[0] == "probe_id"
        assert table["adj.P.Val"].is_monotonic_increasing
        assert len(table) == len(run.result)

    def test_summary_written(self, run):
        summary = pd.read_csv(run.outputs["summary"], index_col=0)
        assert summary.loc["AD-Control", "Up"] == run.summary.loc["AD-Control", "Up"]
        assert summary.loc["AD-Control", "Up"] >= 5

    def test_plots_written(self, run):
        for key in ("volcano", "md", "pvalue_histogram", "logfc_histogram",
                    "density_raw", "density_normalized", "pca"):
            assert run.outputs[key].exists(), key


class TestMethylationRun:

    @pytest.fixture
    def run(self, tmp_path, methylation_files):
        config = methylation_config(tmp_path, methylation_files)
        return DifferentialPipeline(config, skip_plots=True).run()

    def test_modeled_on_m_values(self, run):
        assert run.normalized.scale == "m_value"
        assert run.beta is not None

    def test_snp_probes_removed(self, run):
        assert not any(p.startswith("rs") for p in run.raw.primary.probe_ids if p in run.result.row_ids)

    def test_tolerant_annotation_drops_unannotated(self, run, methylation_files):
        assert not set(methylation_files["unannotated"]) & set(run.result.row_ids)
        assert len(run.result) == 72

    def test_delta_beta_reported(self, run, methylation_files):
        table = run.result.table
        assert "delta_beta" in table.columns
        assert (table.loc[methylation_files["de_probes"], "delta_beta"] > 0.1).all()

    def test_injected_probes_significant(self, run, methylation_files):
        significant = run.result.table.index[run.result.table["adj.P.Val"] <= 0.05]
        assert set(methylation_files["de_probes"]) <= set(significant)

    def test_no_plots(self, run):
        assert set(run.outputs) == {"top_table", "summary"}


class TestFailures:

    def test_strict_annotation_gap(self, tmp_path, expression_files):
        annotation = pd.read_csv(expression_files["annotation"], sep="\t", skiprows=25)
        with open(expression_files["annotation"], "w") as f:
            f.write("# truncated\n" * 25)
            annotation.iloc[:-2].to_csv(f, sep="\t", index=False)

        config = expression_config(tmp_path, expression_files)
        with pytest.raises(IntegrityError):
            DifferentialPipeline(config, skip_plots=True).run()


class TestCommandLine:

    def test_success(self, tmp_path, expression_files, monkeypatch):
        monkeypatch.chdir(tmp_path)
        status = main([
            "--dataset", "ad_neurons",
            "--raw-dir", str(expression_files["raw_dir"]),
            "--metadata", str(expression_files["metadata"]),
            "--annotation", str(expression_files["annotation"]),
            "--output-dir", str(tmp_path / "out"),
            "--skip-plots",
            "--fdr", "0.1",
        ])

        assert status == 0
        assert (tmp_path / "out" / "tables" / "ad_neurons_AD-Control_top_table.csv").exists()

    def test_pipeline_error_exit_status(self, tmp_path, expression_files, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (expression_files["raw_dir"] / "CTL_4.txt").unlink()
        status = main([
            "--raw-dir", str(expression_files["raw_dir"]),
            "--metadata", str(expression_files["metadata"]),
            "--output-dir", str(tmp_path / "out"),
            "--skip-plots",
        ])
        assert status == 1

    def test_unknown_dataset_exit_status(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert main(["--dataset", "nonexistent"]) == 1

"""Pytest configuration and shared fixtures for neuroarray tests."""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from neuroarray.containers import IntensityMatrix, SampleAnnotation  # noqa: E402

N_PROBES = 100
N_PER_GROUP = 5
DE_PROBES = [f"probe_{i:03d}" for i in range(10)]


# ============================================================================
# Synthetic data generators
# ============================================================================


def make_sample_ids(n_per_group: int = N_PER_GROUP):
    """Interleaved AD/Control sample ids so group membership is not positional."""
    ids, groups = [], []
    for i in range(n_per_group):
        ids += [f"AD_{i + 1}", f"CTL_{i + 1}"]
        groups += ["AD", "Control"]
    return ids, groups


def make_log2_matrix(
    n_probes: int = N_PROBES,
    n_per_group: int = N_PER_GROUP,
    effect: float = 2.0,
    noise_sd: float = 0.5,
    seed: int = 42
) -> pd.DataFrame:
    """log2 expression with `effect` added to the AD samples of DE_PROBES."""
    rng = np.random.default_rng(seed)
    sample_ids, groups = make_sample_ids(n_per_group)
    probe_ids = [f"probe_{i:03d}" for i in range(n_probes)]

    baseline = rng.uniform(6, 10, size=(n_probes, 1))
    values = baseline + rng.normal(0, noise_sd, size=(n_probes, len(sample_ids)))

    is_ad = np.array([g == "AD" for g in groups])
    de_rows = [probe_ids.index(p) for p in DE_PROBES if p in probe_ids]
    values[np.ix_(de_rows, is_ad)] += effect

    return pd.DataFrame(values, index=pd.Index(probe_ids, name="probe_id"), columns=sample_ids)


def make_samples(n_per_group: int = N_PER_GROUP) -> pd.DataFrame:
    sample_ids, groups = make_sample_ids(n_per_group)
    return pd.DataFrame(
        {"disease_state": groups, "age": np.arange(len(sample_ids)) + 60},
        index=pd.Index(sample_ids, name="sample_id"),
    )


def write_tsv(df: pd.DataFrame, path: Path, comment_lines: int = 0, index: bool = False) -> Path:
    """Write a tab-delimited table, optionally preceded by '#' comment lines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for i in range(comment_lines):
            f.write(f"# header line {i}\n")
        df.to_csv(f, sep="\t", index=index)
    return path


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def log2_values() -> pd.DataFrame:
    return make_log2_matrix()


@pytest.fixture
def log2_matrix(log2_values) -> IntensityMatrix:
    return IntensityMatrix(values=log2_values, scale="log2")


@pytest.fixture
def samples() -> SampleAnnotation:
    return SampleAnnotation(table=make_samples())


@pytest.fixture
def raw_intensities() -> pd.DataFrame:
    """Raw-scale intensities with sample-specific scaling factors."""
    rng = np.random.default_rng(7)
    values = 2 ** make_log2_matrix(n_probes=200, seed=7)
    scale = rng.uniform(0.5, 2.0, size=values.shape[1])
    return values * scale


@pytest.fixture
def expression_files(tmp_path):
    """
    Per-sample expression tables, metadata and annotation on disk.

    Returns:
        Dict of paths plus the log2 truth matrix
    """
    log2 = make_log2_matrix(n_probes=60)
    raw_dir = tmp_path / "raw"

    control_ids = ["AFFX-BioB-5_at", "AFFX-BioC-5_at"]
    for sample in log2.columns:
        table = pd.DataFrame({
            "ID_REF": list(log2.index) + control_ids,
            "VALUE": list(2 ** log2[sample]) + [5000.0, 6000.0],
            "ABS_CALL": ["P"] * len(log2) + ["P", "P"],
        })
        write_tsv(table, raw_dir / f"{sample}.txt")

    metadata = make_samples().reset_index()
    metadata_path = write_tsv(metadata, tmp_path / "samples.tsv")

    annotation = pd.DataFrame({
        "Probe Set ID": log2.index,
        "Gene Symbol": [f"GENE{i} /// GENE{i}B" if i % 7 == 0 else f"GENE{i}" for i in range(len(log2))],
        "Chromosome": [f"chr{(i % 22) + 1}" for i in range(len(log2))],
        "Start": [1000 * (i + 1) for i in range(len(log2))],
        "Sequence Type": ["Consensus sequence"] * len(log2),
    })
    annotation_path = write_tsv(annotation, tmp_path / "annotation.tsv", comment_lines=25)

    return {
        "raw_dir": raw_dir,
        "metadata": metadata_path,
        "annotation": annotation_path,
        "truth": log2,
    }


@pytest.fixture
def methylation_files(tmp_path):
    """Per-sample methylated/unmethylated signal tables with SNP probes and partial annotation."""
    rng = np.random.default_rng(11)
    sample_ids, groups = make_sample_ids()
    probe_ids = [f"cg{i:08d}" for i in range(80)]
    is_ad = np.array([g == "AD" for g in groups])

    beta = rng.uniform(0.1, 0.6, size=(len(probe_ids), 1)) + rng.normal(0, 0.02, size=(len(probe_ids), len(sample_ids)))
    beta[:8][:, is_ad] += 0.3
    beta = np.clip(beta, 0.02, 0.98)
    total = rng.uniform(3000, 8000, size=beta.shape)

    raw_dir = tmp_path / "raw"
    snp_ids = ["rs1000", "rs2000"]
    for j, sample in enumerate(sample_ids):
        table = pd.DataFrame({
            "ID_REF": probe_ids + snp_ids,
            "Methylated signal": list(beta[:, j] * total[:, j]) + [4000.0, 100.0],
            "Unmethylated signal": list((1 - beta[:, j]) * total[:, j]) + [100.0, 4000.0],
            "Detection Pval": [0.0001] * len(probe_ids) + [0.0001, 0.0001],
        })
        write_tsv(table, raw_dir / f"{sample}.txt")

    metadata = make_samples().reset_index()
    metadata_path = write_tsv(metadata, tmp_path / "samples.tsv")

    annotated = probe_ids[:72]
    annotation = pd.DataFrame({
        "IlmnID": annotated,
        "UCSC_RefGene_Name": [f"GENE{i};GENE{i}" for i in range(len(annotated))],
        "CHR": ["1"] * len(annotated),
        "MAPINFO": [10_000 + 50 * i for i in range(len(annotated))],
        "UCSC_RefGene_Group": ["TSS200;Body"] * len(annotated),
    })
    annotation_path = write_tsv(annotation, tmp_path / "manifest.tsv", comment_lines=7)

    return {
        "raw_dir": raw_dir,
        "metadata": metadata_path,
        "annotation": annotation_path,
        "de_probes": probe_ids[:8],
        "unannotated": probe_ids[72:],
    }

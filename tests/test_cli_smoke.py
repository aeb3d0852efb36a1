from __future__ import annotations

import gzip
import json
import random
from pathlib import Path

from Bio import Phylo
from typer.testing import CliRunner

from sketchtree import __version__
from sketchtree.cli import app
from sketchtree.paths import MANIFEST_FILENAME, PHYLIP_FILENAME

runner = CliRunner()


def _mutate(sequence: str, rate: float, rng: random.Random) -> str:
    bases = list(sequence)
    for idx, base in enumerate(bases):
        if rng.random() < rate:
            bases[idx] = rng.choice([other for other in "ACGT" if other != base])
    return "".join(bases)


def _write_genomes(tmp_path: Path, *, extra_length: int = 0) -> list[Path]:
    rng = random.Random(17)
    ancestor = "".join(rng.choice("ACGT") for _ in range(5000))
    g1 = _mutate(ancestor, 0.01, rng)
    g2 = _mutate(ancestor, 0.03, rng)
    g3 = _mutate(ancestor, 0.06, rng) + "".join(rng.choice("ACGT") for _ in range(extra_length))

    genome_dir = tmp_path / "genomes"
    genome_dir.mkdir()
    paths = [genome_dir / "g1.fna", genome_dir / "g2.fasta", genome_dir / "g3.fna.gz"]
    paths[0].write_text(f">g1\n{g1}\n", encoding="utf-8")
    paths[1].write_text(f">g2 sample two\n{g2[:2500]}\n{g2[2500:]}\n", encoding="utf-8")
    with gzip.open(paths[2], "wt", encoding="utf-8") as handle:
        handle.write(f">g3\n{g3}\n")
    return paths


def test_root_help_smoke() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "tree" in result.stdout
    assert "matrix" in result.stdout


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_tree_writes_newick_and_removes_workdir(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    out_path = tmp_path / "tree.nwk"
    workdir = tmp_path / "work"

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "-o", str(out_path), "--workdir", str(workdir), "-t", "2"],
    )

    assert result.exit_code == 0, result.output
    tree = Phylo.read(out_path, "newick")
    assert sorted(clade.name for clade in tree.get_terminals()) == ["g1", "g2", "g3"]
    assert all(clade.name is None for clade in tree.get_nonterminals())
    assert not workdir.exists()


def test_tree_keep_retains_matrix_and_manifest(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    out_path = tmp_path / "tree.nwk"
    workdir = tmp_path / "work"

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "-o", str(out_path), "--workdir", str(workdir), "-K", "-c"],
    )

    assert result.exit_code == 0, result.output
    lines = (workdir / PHYLIP_FILENAME).read_text(encoding="utf-8").splitlines()
    assert lines[0] == "3"
    assert [line.split()[0] for line in lines[1:]] == ["g1", "g2", "g3"]
    for idx, line in enumerate(lines[1:]):
        assert line.split()[idx + 1] == "0"

    manifest = json.loads((workdir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["command"] == "tree"
    assert manifest["status"] == "completed"
    assert manifest["parameters"]["resolved_kmer_size"] == 10
    assert manifest["parameters"]["canonical"] is True
    assert str(out_path) in manifest["output_paths"]
    assert len(list((workdir / "sketches").glob("*.sketch.json"))) == 3


def test_tree_dry_run_stops_before_sketching(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    out_path = tmp_path / "tree.nwk"
    workdir = tmp_path / "work"

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "-o", str(out_path), "--workdir", str(workdir), "--keep", "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    assert not out_path.exists()
    manifest = json.loads((workdir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["status"] == "dry-run"
    assert manifest["dry_run"] is True
    assert list((workdir / "sketches").iterdir()) == []


def test_matrix_writes_phylip(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    out_path = tmp_path / "distance.phylip"

    result = runner.invoke(
        app,
        ["matrix", *map(str, inputs), "-o", str(out_path), "--workdir", str(tmp_path / "work"), "-k", "12"],
    )

    assert result.exit_code == 0, result.output
    rows = [line.split() for line in out_path.read_text(encoding="utf-8").splitlines()]
    assert rows[0] == ["3"]
    values = [[float(value) for value in row[1:]] for row in rows[1:]]
    for i in range(3):
        assert values[i][i] == 0.0
        for j in range(3):
            assert values[i][j] == values[j][i]
            assert 0.0 <= values[i][j] <= 1.0
    # g1 and g2 diverged least from each other.
    assert values[0][1] < values[0][2]


def test_config_file_sets_parameters(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    workdir = tmp_path / "work"
    config_path = tmp_path / "sketchtree.yaml"
    config_path.write_text(
        "tree:\n"
        "  kmer_size: 14\n"
        "  sketch_size: 500\n"
        "  keep: true\n"
        f"  workdir: {workdir}\n",
        encoding="utf-8",
    )

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "--config", str(config_path), "-o", str(tmp_path / "tree.nwk")],
    )

    assert result.exit_code == 0, result.output
    manifest = json.loads((workdir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["parameters"]["resolved_kmer_size"] == 14
    assert manifest["parameters"]["kmer_source"] == "pinned"
    assert manifest["parameters"]["sketch_size"] == 500


def test_tree_rejects_non_fasta_input(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    bad = tmp_path / "notes.fna"
    bad.write_text("this is not a genome\n", encoding="utf-8")

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), str(bad), "-o", str(tmp_path / "tree.nwk"), "--workdir", str(tmp_path / "w")],
    )

    assert result.exit_code == 2
    assert "notes.fna" in result.output
    assert not (tmp_path / "w").exists()


def test_tree_requires_three_inputs(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)[:2]

    result = runner.invoke(app, ["tree", *map(str, inputs), "--workdir", str(tmp_path / "w")])

    assert result.exit_code == 2


def test_tree_refuses_existing_output(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    out_path = tmp_path / "tree.nwk"
    out_path.write_text("(a,b,c);\n", encoding="utf-8")

    result = runner.invoke(app, ["tree", *map(str, inputs), "-o", str(out_path), "--workdir", str(tmp_path / "w")])

    assert result.exit_code == 2
    assert out_path.read_text(encoding="utf-8") == "(a,b,c);\n"


def test_outlier_policies(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path, extra_length=20_000)
    args = ["tree", *map(str, inputs), "-o", str(tmp_path / "tree.nwk")]

    aborted = runner.invoke(app, [*args, "--outlier-policy", "abort", "--workdir", str(tmp_path / "w1")])
    assert aborted.exit_code == 1
    assert "g3" in aborted.output

    excluded = runner.invoke(app, [*args, "--outlier-policy", "exclude", "--workdir", str(tmp_path / "w2")])
    assert excluded.exit_code == 2

    warned = runner.invoke(app, [*args, "--workdir", str(tmp_path / "w3")])
    assert warned.exit_code == 0, warned.output
    assert (tmp_path / "tree.nwk").exists()


def test_tree_force_keeps_files_already_in_workdir(tmp_path: Path) -> None:
    inputs = _write_genomes(tmp_path)
    workdir = tmp_path / "project"
    workdir.mkdir()
    precious = workdir / "precious_results.txt"
    precious.write_text("keep me\n", encoding="utf-8")

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "-o", str(tmp_path / "tree.nwk"), "--workdir", str(workdir), "--force"],
    )

    assert result.exit_code == 0, result.output
    assert precious.read_text(encoding="utf-8") == "keep me\n"
    assert not (workdir / "sketches").exists()
    assert not (workdir / MANIFEST_FILENAME).exists()


def test_tree_marks_manifest_failed_on_unexpected_error(tmp_path: Path, monkeypatch) -> None:
    inputs = _write_genomes(tmp_path)
    workdir = tmp_path / "work"

    def _explode(*args, **kwargs):
        raise RuntimeError("solver crashed")

    monkeypatch.setattr("sketchtree.commands.tree.compute_newick_tree", _explode)

    result = runner.invoke(
        app,
        ["tree", *map(str, inputs), "-o", str(tmp_path / "tree.nwk"), "--workdir", str(workdir), "--keep"],
    )

    assert result.exit_code == 1
    assert "solver crashed" in result.output
    manifest = json.loads((workdir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["status"] == "failed"
    assert not (tmp_path / "tree.nwk").exists()


def test_matrix_marks_manifest_failed_on_unexpected_error(tmp_path: Path, monkeypatch) -> None:
    inputs = _write_genomes(tmp_path)
    workdir = tmp_path / "work"

    def _explode(*args, **kwargs):
        raise RuntimeError("sketching crashed")

    monkeypatch.setattr("sketchtree.commands.matrix.compute_distance_matrix", _explode)

    result = runner.invoke(
        app,
        ["matrix", *map(str, inputs), "-o", str(tmp_path / "d.phylip"), "--workdir", str(workdir), "--keep"],
    )

    assert result.exit_code == 1
    manifest = json.loads((workdir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["status"] == "failed"
    assert manifest["output_paths"] == []


def test_dry_run_reports_run_settings(tmp_path: Path, monkeypatch) -> None:
    inputs = _write_genomes(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["tree", *map(str, inputs), "--workdir", "work", "-t", "3", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert f"sketchtree {__version__}" in result.output
    assert "Threads" in result.output
    assert "Working directory" in result.output
    assert "work (removed after the run)" in result.output
    assert not (tmp_path / "work").exists()

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from sketchtree.config import MatrixConfig, merge_command_config
from sketchtree.core.matrix import phylip_text, write_phylip
from sketchtree.exceptions import SketchTreeError, SketchTreeUsageError
from sketchtree.logging import configure_logging, get_logger
from sketchtree.manifest import create_run_manifest, finalize_manifest, record_outliers, write_manifest
from sketchtree.pipeline import compute_distance_matrix, plan_parameters, print_parameters, print_plan, working_directory
from sketchtree.utils.validation import validate_inputs

console = Console(stderr=True)


def run_matrix(
    *,
    config_path: Path | None,
    inputs: list[Path] | None,
    output: Path | None,
    keep: bool | None,
    threads: int | None,
    sketch_size: int | None,
    seed: int | None,
    kmer_size: int | None,
    oversketch: int | None,
    min_abundance: int | None,
    backend: str | None,
    target_probability: float | None,
    outlier_epsilon: float | None,
    outlier_policy: str | None,
    workdir: Path | None,
    dry_run: bool | None,
    force: bool | None,
    log_file: Path | None,
    verbose: bool | None,
    quiet: bool | None,
) -> int:
    try:
        cfg = merge_command_config(
            config_path=config_path,
            section="matrix",
            model_cls=MatrixConfig,
            cli_overrides={
                "inputs": inputs or None,
                "output": output,
                "keep": keep,
                "threads": threads,
                "sketch_size": sketch_size,
                "seed": seed,
                "kmer_size": kmer_size,
                "oversketch": oversketch,
                "min_abundance": min_abundance,
                "backend": backend,
                "target_probability": target_probability,
                "outlier_epsilon": outlier_epsilon,
                "outlier_policy": outlier_policy,
                "workdir": workdir,
                "dry_run": dry_run,
                "force": force,
                "log_file": log_file,
                "verbose": verbose,
                "quiet": quiet,
            },
        )
        configure_logging(verbose=cfg.verbose, quiet=cfg.quiet, log_file=cfg.log_file)
        logger = get_logger("sketchtree.matrix")

        if cfg.output is not None and cfg.output.exists() and not cfg.force:
            raise SketchTreeUsageError(f"Refusing to overwrite existing file without --force: {cfg.output}")

        records = validate_inputs(cfg.inputs)

        with working_directory(cfg) as layout:
            plan = plan_parameters(records, cfg)

            step_plan = [
                f"Validate {len(records)} single-record FASTA inputs",
                f"Sketch {len(plan.genomes)} genomes with k={plan.kmer_length} ({cfg.backend} backend)",
                "Estimate pairwise Mash distances",
                "Assemble the symmetric distance matrix",
                f"Write PHYLIP matrix to {cfg.output if cfg.output is not None else 'stdout'}",
            ]

            manifest = create_run_manifest(
                command="matrix",
                argv=sys.argv,
                workdir=layout.root,
                dry_run=cfg.dry_run,
                threads=cfg.threads,
                config_path=config_path,
                input_paths=[record.source_path for record in records],
                planned_steps=step_plan,
                parameters={
                    **cfg.model_dump(mode="json", exclude={"inputs"}),
                    "resolved_kmer_size": plan.kmer_length,
                    "kmer_source": plan.kmer_source,
                },
            )
            record_outliers(manifest, plan.outliers, policy=cfg.outlier_policy)
            write_manifest(layout.root, manifest)

            print_plan(console, "Matrix step plan", step_plan)
            print_parameters(console, plan, cfg)
            if cfg.dry_run:
                logger.info("Dry-run requested; stopping before sketching.")
                finalize_manifest(manifest, status="dry-run", output_paths=[])
                write_manifest(layout.root, manifest)
                return 0

            outputs: list[Path] = []
            try:
                result = compute_distance_matrix(plan, cfg, layout, console=console)
                if cfg.output is None:
                    sys.stdout.write(phylip_text(result.matrix))
                    sys.stdout.flush()
                else:
                    outputs.append(write_phylip(result.matrix, cfg.output, force=cfg.force))
                if cfg.keep:
                    outputs.append(write_phylip(result.matrix, layout.phylip_path, force=cfg.force))
            except Exception:
                finalize_manifest(manifest, status="failed", output_paths=outputs)
                write_manifest(layout.root, manifest)
                raise

            finalize_manifest(manifest, status="completed", output_paths=outputs)
            write_manifest(layout.root, manifest)

        logger.info("Distance matrix written for %d genomes.", result.matrix.size)
        return 0

    except SketchTreeError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}", soft_wrap=True)
        return exc.exit_code
    except Exception as exc:
        get_logger("sketchtree.matrix").exception("Unhandled matrix error")
        console.print(f"[red]Unexpected error:[/red] {escape(str(exc))}", soft_wrap=True)
        return 1


def matrix_command(
    inputs: list[Path] | None = typer.Argument(
        None,
        help="FASTA file(s) to compare, one genome per file [supports .gz, .bz2, .xz].",
        show_default=False,
    ),
    output: Path | None = typer.Option(None, "-o", "--output", help="Write the PHYLIP matrix to this file."),
    keep: bool | None = typer.Option(None, "-K", "--keep", help="Keep the working directory with sketches."),
    threads: int | None = typer.Option(None, "-t", "--threads", min=1, help="Worker threads."),
    sketch_size: int | None = typer.Option(
        None, "-s", "--size", min=1, help="Sketch size.", rich_help_panel="Sketching options"
    ),
    seed: int | None = typer.Option(
        None, "-S", "--seed", min=0, help="Seed for the hash function.", rich_help_panel="Sketching options"
    ),
    kmer_size: int | None = typer.Option(
        None,
        "-k",
        "--kmer",
        min=1,
        max=32,
        help="K-mer size; selected from the mean genome size when omitted.",
        rich_help_panel="Sketching options",
    ),
    oversketch: int | None = typer.Option(
        None,
        "-x",
        "--oversketch",
        min=1,
        help="Amount of extra sketching before filtering.",
        rich_help_panel="Sketching options",
    ),
    min_abundance: int | None = typer.Option(
        None,
        "--min-abundance",
        min=1,
        help="Drop k-mers seen fewer times than this before final sketch selection.",
        rich_help_panel="Sketching options",
    ),
    backend: str | None = typer.Option(
        None, "--backend", help="Sketch backend: builtin or mash.", rich_help_panel="Sketching options"
    ),
    target_probability: float | None = typer.Option(
        None,
        "--probability",
        help="Random k-mer match probability used to select k.",
        rich_help_panel="Sketching options",
    ),
    outlier_epsilon: float | None = typer.Option(
        None,
        "--outlier-epsilon",
        help="Mean shift, as a fraction of the mean genome size, that flags an outlier in small samples.",
        rich_help_panel="Sketching options",
    ),
    outlier_policy: str | None = typer.Option(
        None,
        "--outlier-policy",
        help="What to do with genome size outliers: warn, exclude or abort.",
        rich_help_panel="Sketching options",
    ),
    workdir: Path | None = typer.Option(None, "--workdir", help="Working directory for sketches."),
    config: Path | None = typer.Option(None, "--config", help="YAML config file."),
    dry_run: bool | None = typer.Option(None, "--dry-run", help="Validate inputs and plan only."),
    force: bool | None = typer.Option(None, "--force", help="Overwrite existing outputs."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write JSON logs to this file."),
    verbose: bool | None = typer.Option(None, "--verbose", help="Enable verbose logging."),
    quiet: bool | None = typer.Option(None, "--quiet", help="Only show errors."),
) -> None:
    """Compute the pairwise sketch-distance matrix in PHYLIP format."""

    exit_code = run_matrix(
        config_path=config,
        inputs=inputs,
        output=output,
        keep=keep,
        threads=threads,
        sketch_size=sketch_size,
        seed=seed,
        kmer_size=kmer_size,
        oversketch=oversketch,
        min_abundance=min_abundance,
        backend=backend,
        target_probability=target_probability,
        outlier_epsilon=outlier_epsilon,
        outlier_policy=outlier_policy,
        workdir=workdir,
        dry_run=dry_run,
        force=force,
        log_file=log_file,
        verbose=verbose,
        quiet=quiet,
    )
    raise typer.Exit(exit_code)

"""
tokenweave command line.

Commands:
- list: Show the permutations a manifest produces
- resolve: Resolve one permutation, or all of them, to JSON
- cycles: Report alias cycles in a token file
- merge: Merge token files, reporting conflicts
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tokenweave._version import get_version
from tokenweave.core.ast import build_ast
from tokenweave.core.config import ResolverConfig, find_config, load_config
from tokenweave.core.cycles import detect_cycles
from tokenweave.core.errors import TokenweaveError
from tokenweave.core.manifest import OUTPUT_KEY, Manifest, OneOfModifier, load_manifest
from tokenweave.core.merge import merge_all
from tokenweave.core.permutations import (
    collect_files,
    count_permutations,
    generate_all,
    generate_id,
    iter_generate,
    resolve_permutation,
)
from tokenweave.core.reader import TokenFileReader

app = typer.Typer(
    help="Merge, resolve and permute DTCG design-token documents",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

LOG_LEVEL_ENV = "TOKENWEAVE_LOG_LEVEL"


def version_callback(value: bool) -> None:
    if value:
        console.print(f"tokenweave {get_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get(LOG_LEVEL_ENV, "WARNING")
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to tokenweave.toml"),
) -> None:
    _configure_logging(verbose)
    ctx.obj = config


def _load_config(ctx: typer.Context, manifest_path: Path | None = None) -> ResolverConfig:
    config_path: Path | None = ctx.obj
    if config_path is None:
        config_path = find_config(manifest_path.parent if manifest_path else None)
    if config_path is None:
        base = manifest_path.parent if manifest_path else Path.cwd()
        return ResolverConfig(base_path=str(base))
    return load_config(config_path)


def _fail(error: TokenweaveError) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {escape(str(error))}", highlight=False, soft_wrap=True)
    return typer.Exit(1)


def _parse_selection(manifest: Manifest, pairs: list[str]) -> dict[str, Any]:
    """``name=value`` pairs; anyOf values are comma separated."""
    selection: dict[str, Any] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            err_console.print(f"[red]Error:[/red] expected name=value, got '{escape(pair)}'")
            raise typer.Exit(1)
        modifier = manifest.modifiers.get(name)
        if modifier is None or isinstance(modifier, OneOfModifier) or name == OUTPUT_KEY:
            selection[name] = value
        else:
            selection[name] = [v for v in value.split(",") if v]
    return selection


def _write_json(document: dict[str, Any], target: Path | None) -> None:
    text = json.dumps(document, indent=2, ensure_ascii=False)
    if target is None:
        console.print_json(text)
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text + "\n", encoding="utf-8")
    console.print(f"[green]Wrote[/green] {target}")


@app.command(name="list")
def list_command(
    manifest_path: Path = typer.Argument(..., help="Manifest file (JSON or YAML)"),
    manifest_format: str | None = typer.Option(
        None, "--format", "-f", help="Manifest format (detected when omitted)"
    ),
) -> None:
    """List the permutations a manifest produces."""
    try:
        manifest = load_manifest(manifest_path, manifest_format)
    except TokenweaveError as e:
        raise _fail(e) from e

    if manifest.generate is None:
        console.print(f"{count_permutations(manifest)} permutation(s)")

    table = Table(title=manifest.name or str(manifest_path))
    table.add_column("ID", style="cyan")
    table.add_column("Output")
    table.add_column("Files")
    for selection, spec, output in iter_generate(manifest):
        files = collect_files(manifest, selection, spec)
        table.add_row(generate_id(selection), output or "-", "\n".join(files))
    console.print(table)


@app.command(name="resolve")
def resolve_command(
    ctx: typer.Context,
    manifest_path: Path = typer.Argument(..., help="Manifest file (JSON or YAML)"),
    modifier: list[str] = typer.Option(
        [], "--modifier", "-m", help="Modifier selection as name=value (anyOf: a,b)"
    ),
    all_permutations: bool = typer.Option(False, "--all", help="Resolve every permutation"),
    output_dir: Path | None = typer.Option(None, "--output", "-o", help="Directory for JSON output"),
    resolve: bool | None = typer.Option(
        None, "--resolve/--no-resolve", help="Override the manifest's resolveReferences option"
    ),
    manifest_format: str | None = typer.Option(
        None, "--format", "-f", help="Manifest format (detected when omitted)"
    ),
) -> None:
    """Resolve one permutation (or all with --all) to JSON."""
    try:
        config = _load_config(ctx, manifest_path)
        if resolve is not None:
            config.resolve_references = resolve
        manifest = load_manifest(manifest_path, manifest_format)
        reader = TokenFileReader(config.base_path, cache=config.cache)

        if all_permutations:
            results = generate_all(manifest, reader, config)
        else:
            selection = _parse_selection(manifest, modifier)
            results = [resolve_permutation(manifest, selection, reader, config=config)]
    except TokenweaveError as e:
        raise _fail(e) from e

    for result in results:
        if output_dir is None:
            if len(results) > 1:
                console.rule(result.id)
            _write_json(result.document, None)
        else:
            _write_json(result.document, output_dir / (result.output or f"{result.id}.json"))


@app.command(name="cycles")
def cycles_command(
    token_file: Path = typer.Argument(..., help="Token file (JSON or YAML)"),
) -> None:
    """Report alias cycles in a token file."""
    try:
        document = TokenFileReader(token_file.parent).read(token_file.name)
    except TokenweaveError as e:
        raise _fail(e) from e

    result = detect_cycles(build_ast(document))
    if not result.has_cycles:
        console.print("[green]No cycles found[/green]")
        return

    table = Table(title=f"Cycles in {token_file}")
    table.add_column("#", justify="right")
    table.add_column("Cycle", style="red")
    for index, cycle in enumerate(result.cycles, 1):
        table.add_row(str(index), " -> ".join(cycle + cycle[:1]))
    console.print(table)
    raise typer.Exit(1)


@app.command(name="merge")
def merge_command(
    token_files: list[Path] = typer.Argument(..., help="Token files, merged left to right"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the result here"),
) -> None:
    """Merge token files; later files override earlier ones."""
    try:
        documents = [TokenFileReader(path.parent).read(path.name) for path in token_files]
        merged = merge_all(documents)
    except TokenweaveError as e:
        raise _fail(e) from e
    _write_json(merged, output)


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)


if __name__ == "__main__":
    main()

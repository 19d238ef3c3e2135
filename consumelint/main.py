"""consumelint CLI - use-after-consume and leak checks for consuming-ownership array code."""
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.table import Table
from rich.markup import escape

from consumelint.utils.safe_console import SafeConsole
from consumelint.utils.logger import safe_print, debug
from consumelint.config import get_config, __version__
from consumelint.analyzer.linter import Linter, LintResult, discover_files
from consumelint.analyzer.parser import LanguageParser
from consumelint.analyzer.vocabulary import Vocabulary, VocabularyRegistry
from consumelint.reporter.fixes import apply_fixes
from consumelint.reporter.backup import BackupStore

app = typer.Typer(
    name="consumelint",
    help="Find arrays used after being consumed, never released, or kept alive for nothing",
    add_completion=False
)
console = SafeConsole()

FORMATS = ("table", "text", "json")

# ESLint-style cap on fix passes per file
MAX_FIX_PASSES = 10


def load_active_vocabulary(extra: Optional[List[Path]]) -> Vocabulary:
    """Built-in vocabulary plus CONSUMELINT_VOCABULARY plus --vocabulary files.

    Raises:
        ValueError: On invalid configuration or a missing --vocabulary path
    """
    config = get_config()
    paths = list(config.vocabulary_paths)
    for path in extra or []:
        if not path.exists():
            raise ValueError(f"Vocabulary file not found: {path}")
        paths.append(path)

    registry = VocabularyRegistry()
    vocabulary = registry.load(paths)
    for path in registry.loaded_files:
        debug(f"loaded vocabulary overrides from {path}")
    return vocabulary


def _vocabulary_or_exit(extra: Optional[List[Path]]) -> Vocabulary:
    try:
        return load_active_vocabulary(extra)
    except ValueError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(2)


def _check_paths_exist(paths: List[Path]):
    for path in paths:
        if not path.exists():
            console.print(f"[bold red]Error:[/bold red] Path does not exist: {escape(str(path))}")
            raise typer.Exit(2)


def _display_path(path: Optional[Path]) -> str:
    if path is None:
        return "<input>"
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


def _print_table(results: List[LintResult]):
    table = Table(title="Ownership Violations")
    table.add_column("File", style="cyan", no_wrap=False)
    table.add_column("Line", style="green", justify="right")
    table.add_column("Rule", style="yellow")
    table.add_column("Message", style="white", no_wrap=False)

    for result in results:
        for diagnostic in result.diagnostics:
            table.add_row(
                escape(_display_path(result.path)),
                f"{diagnostic.line}:{diagnostic.column}",
                diagnostic.rule,
                escape(diagnostic.message),
            )
    console.print(table)


def _print_text(results: List[LintResult]):
    for result in results:
        for diagnostic in result.diagnostics:
            safe_print(
                f"{_display_path(result.path)}:{diagnostic.line}:{diagnostic.column}: "
                f"{diagnostic.rule} {diagnostic.message}"
            )


def _print_json(results: List[LintResult]):
    payload = [
        {
            "path": _display_path(result.path),
            "skipped": result.error,
            "diagnostics": [d.to_dict() for d in result.diagnostics],
        }
        for result in results
    ]
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command()
def check(
    paths: List[Path] = typer.Argument(..., help="Files or directories to check"),
    output_format: str = typer.Option("table", "--format", "-f", help="Output format (table, text, json)"),
    vocabulary: Optional[List[Path]] = typer.Option(None, "--vocabulary", "-V", help="Extra vocabulary JSON file or directory (repeatable)"),
    include_node_modules: bool = typer.Option(False, "--include-node-modules", help="Also scan node_modules directories"),
):
    """Check files for use-after-consume, never-released and useless keep-alive markers."""
    if output_format not in FORMATS:
        console.print(f"[bold red]Error:[/bold red] Unknown format '{escape(output_format)}'. Choose from: {', '.join(FORMATS)}")
        raise typer.Exit(2)
    _check_paths_exist(paths)

    linter = Linter(_vocabulary_or_exit(vocabulary))
    results = list(linter.lint_paths(paths, include_node_modules=include_node_modules))
    total = sum(len(r.diagnostics) for r in results)
    skipped = [r for r in results if r.skipped]

    if output_format == "json":
        _print_json(results)
    elif output_format == "text":
        _print_text(results)
    else:
        if total:
            _print_table(results)
        console.print(f"\n[bold]Files checked:[/bold] {len(results) - len(skipped)}")
        if skipped:
            console.print(f"[yellow]Files skipped:[/yellow] {len(skipped)}")
        if total:
            console.print(f"[bold red]✗ {total} problem(s) found[/bold red]")
        else:
            console.print("[green]✓ No problems found[/green]")

    if total:
        raise typer.Exit(1)


@app.command()
def fix(
    paths: List[Path] = typer.Argument(..., help="Files or directories to fix"),
    suggestions: bool = typer.Option(False, "--suggestions", help="Also apply suggested fixes (insert .ref, add .dispose())"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing files"),
    backup: bool = typer.Option(False, "--backup", help="Copy each file to the backup directory before rewriting it"),
    vocabulary: Optional[List[Path]] = typer.Option(None, "--vocabulary", "-V", help="Extra vocabulary JSON file or directory (repeatable)"),
    include_node_modules: bool = typer.Option(False, "--include-node-modules", help="Also scan node_modules directories"),
):
    """Apply automatic fixes (and optionally suggestions) in place."""
    _check_paths_exist(paths)
    linter = Linter(_vocabulary_or_exit(vocabulary))
    store = BackupStore(get_config().backup_dir) if backup and not dry_run else None

    files_changed = 0
    fixes_applied = 0
    remaining = 0

    for file_path in discover_files(paths, include_node_modules):
        result = linter.lint_file(file_path)
        if result.skipped:
            continue

        language = LanguageParser.language_for(file_path)
        source = result.source
        applied_here = 0
        for _ in range(MAX_FIX_PASSES):
            source, applied = apply_fixes(source, result.diagnostics, include_suggestions=suggestions)
            if not applied:
                break
            applied_here += applied
            result = linter.lint_source(source, language, file_path)

        remaining += len(result.diagnostics)
        if not applied_here:
            continue

        files_changed += 1
        fixes_applied += applied_here
        label = "Would fix" if dry_run else "Fixed"
        console.print(f"[cyan]{label}[/cyan] {escape(_display_path(file_path))} ({applied_here} edit(s))")
        if dry_run:
            continue
        if store is not None:
            backup_path = store.save(file_path)
            debug(f"backed up {file_path} to {backup_path}")
        file_path.write_bytes(source)

    console.print(f"\n[bold]Fixes applied:[/bold] {fixes_applied} in {files_changed} file(s)")
    if store is not None and store.entries:
        console.print(f"[dim]Originals saved to {escape(str(store.run_dir))}[/dim]")
    if remaining:
        console.print(f"[yellow]⚠ {remaining} problem(s) need manual attention[/yellow]")
        raise typer.Exit(1)


@app.command("vocabulary")
def show_vocabulary(
    vocabulary: Optional[List[Path]] = typer.Option(None, "--vocabulary", "-V", help="Extra vocabulary JSON file or directory (repeatable)"),
):
    """Print the active vocabulary tables."""
    active = _vocabulary_or_exit(vocabulary)

    table = Table(title=f"Vocabulary: {escape(active.source)}", show_header=True, header_style="bold cyan")
    table.add_column("Table", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_column("Names", style="white", no_wrap=False)

    for key, names in active.describe().items():
        table.add_row(key, str(len(names)), escape(", ".join(names)))
    console.print(table)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show the version and exit"),
):
    """consumelint - ownership checks for consuming-array APIs."""
    if version:
        console.print(f"consumelint {__version__}")
        raise typer.Exit(0)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


if __name__ == "__main__":
    app()

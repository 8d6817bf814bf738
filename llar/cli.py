"""Thin CLI wrapper for llar.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler

from llar import __version__
from llar.config import Settings, get_settings, print_settings_json
from llar.errors import LlarError
from llar.types import ModuleRef

app = typer.Typer(
    name="llar",
    help="llar - resolve, build and cache native C/C++ library modules",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"llar version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records to stderr through Rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """llar - resolve, build and cache native C/C++ library modules."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def _print_json(data: Any) -> None:
    console.print(json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(code=1)


def _parse_module(arg: str) -> ModuleRef:
    ref = ModuleRef.parse(arg)
    if not ref.path:
        raise _fail(f"Invalid module argument: {arg}")
    return ref


class _Session:
    """Formula store and source repositories configured from settings."""

    def __init__(self, settings: Settings, offline: bool = False) -> None:
        from llar.formula.store import FormulaStore
        from llar.vcs import github_repo_factory, local_repo_factory, new_repo

        self.settings = settings
        self.client = httpx.Client(
            follow_redirects=True, timeout=float(settings.http_timeout)
        )
        offline = offline or settings.offline
        formula_repo = None if offline else new_repo(settings.formula_repo, self.client)
        self.store = FormulaStore(settings.formula_dir, formula_repo, offline)
        if settings.source_dir is not None:
            self.repo_factory = local_repo_factory(settings.source_dir)
        else:
            self.repo_factory = github_repo_factory(self.client)

    def __enter__(self) -> "_Session":
        return self

    def __exit__(self, *exc: object) -> None:
        self.client.close()


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
    else:
        source_display = str(settings.source_dir) if settings.source_dir else "(GitHub)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Formula directory:   {settings.formula_dir}")
        console.print(f"  Workspace directory: {settings.workspace_dir}")
        console.print(f"  Source directory:    {source_display}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Formula repository:  {settings.formula_repo}")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Concurrency:[/bold]")
        console.print(f"  Max workers:         {settings.max_workers}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Resolve timeout:     {settings.resolve_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  HTTP timeout:        {settings.http_timeout}")


@app.command()
def resolve(
    module: Annotated[str, typer.Argument(help="Module as owner/repo[@version]")],
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use the local formula directory as-is"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve a module's build list with Minimal Version Selection."""
    from llar.build.context import Deadline
    from llar.modules.load import resolve as resolve_module

    settings = get_settings()
    ref = _parse_module(module)
    try:
        with _Session(settings, offline) as session:
            resolution = resolve_module(
                ref,
                session.store,
                session.repo_factory,
                workers=settings.max_workers,
                deadline=Deadline(settings.resolve_timeout),
            )
    except LlarError as e:
        raise _fail(f"Failed to resolve {module}: {e}") from None

    if json_output:
        _print_json(
            [{"path": m.path, "version": m.version} for m in resolution.build_list]
        )
    else:
        console.print(f"[bold]Build list for {resolution.main}:[/bold]")
        for m in resolution.build_list:
            console.print(f"  {m}", markup=False)


@app.command()
def tidy(
    module: Annotated[str, typer.Argument(help="Module as owner/repo@version")],
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use the local formula directory as-is"),
    ] = False,
) -> None:
    """Rewrite a module's versions.json entry with its minimal requirements."""
    from llar.build.context import Deadline
    from llar.modules.load import resolve as resolve_module
    from llar.modules.load import tidy_main

    settings = get_settings()
    ref = _parse_module(module)
    if not ref.version:
        raise _fail("tidy needs an explicit version: owner/repo@version")
    try:
        with _Session(settings, offline) as session:
            resolution = resolve_module(
                ref,
                session.store,
                session.repo_factory,
                workers=settings.max_workers,
                deadline=Deadline(settings.resolve_timeout),
            )
            minimal = tidy_main(resolution, session.store, settings.max_workers)
    except LlarError as e:
        raise _fail(f"Failed to tidy {module}: {e}") from None

    console.print(f"[green]✓ Tidied {resolution.main}[/green]")
    for m in minimal:
        console.print(f"  {m}", markup=False)


def write_output(src_dir: Path, dest: Path) -> None:
    """Copy a build output directory to dest, or zip it when dest ends in .zip."""
    if dest.suffix == ".zip":
        dest.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in sorted(src_dir.rglob("*")):
                if path.is_file():
                    zf.write(path, path.relative_to(src_dir).as_posix())
    else:
        shutil.copytree(src_dir, dest, dirs_exist_ok=True)


@app.command()
def make(
    module: Annotated[str, typer.Argument(help="Module as owner/repo[@version]")],
    matrix: Annotated[
        str | None,
        typer.Option("--matrix", "-m", help="Matrix key (default: host, e.g. amd64-linux)"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output path (directory or .zip file)"),
    ] = None,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use the local formula directory as-is"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve and build a module, printing its metadata."""
    from llar.build.context import Deadline
    from llar.build.matrix import Matrix
    from llar.build.orchestrator import Builder
    from llar.modules.load import load

    settings = get_settings()
    ref = _parse_module(module)
    matrix_key = matrix or Matrix.host().key()

    # Build into a throwaway workspace when exporting the output.
    tmp_workspace = tempfile.TemporaryDirectory(prefix="llar-make-") if output else None
    workspace = Path(tmp_workspace.name) if tmp_workspace else settings.workspace_dir
    try:
        with _Session(settings, offline) as session:
            modules = load(
                ref,
                session.store,
                session.repo_factory,
                workers=settings.max_workers,
                deadline=Deadline(settings.resolve_timeout),
            )
            builder = Builder(
                workspace,
                matrix_key,
                session.repo_factory,
                build_timeout=settings.build_timeout,
            )
            main_ref = modules[0].ref
            builder.build(main_ref, modules)
            result = builder.results[main_ref]

        if output is not None and result.output_dir is not None:
            write_output(Path(result.output_dir), output.resolve())
    except LlarError as e:
        raise _fail(f"Failed to build {module}: {e}") from None
    except OSError as e:
        raise _fail(f"Failed to write output: {e}") from None
    finally:
        if tmp_workspace is not None:
            tmp_workspace.cleanup()

    if json_output:
        _print_json(
            {
                "module": str(main_ref),
                "matrix": matrix_key,
                "output_dir": None if output else str(result.output_dir),
                "output": str(output) if output else None,
                "metadata": result.metadata,
            }
        )
    elif result.metadata:
        console.print(result.metadata, markup=False, highlight=False)


cache_app = typer.Typer(help="Inspect and invalidate the build cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("show")
def cache_show(
    module: Annotated[str, typer.Argument(help="Module path owner/repo")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show cached builds of a module."""
    from llar.build.cache import BuildCache

    settings = get_settings()
    try:
        entries = BuildCache(settings.workspace_dir).entries(module)
    except LlarError as e:
        raise _fail(str(e)) from None

    if json_output:
        _print_json({key: e.model_dump(mode="json") for key, e in entries.items()})
        return
    if not entries:
        console.print(f"[yellow]No cached builds for {module}[/yellow]")
        return
    console.print(f"[bold]Found {len(entries)} cached build(s) for {module}:[/bold]")
    console.print()
    for key, entry in sorted(entries.items()):
        version, _, matrix_key = key.partition("|")
        console.print(f"  [green]{version}[/green] ({matrix_key})")
        console.print(f"    Built: {entry.build_time.isoformat()}")
        console.print(f"    Output: {entry.build_result.output_dir}", markup=False)
        if entry.build_result.metadata:
            console.print(f"    Metadata: {entry.build_result.metadata}", markup=False)
        console.print()


@cache_app.command("clear")
def cache_clear(
    module: Annotated[str, typer.Argument(help="Module path owner/repo")],
    version: Annotated[
        str | None,
        typer.Option("--version", help="Only clear this version"),
    ] = None,
    matrix: Annotated[
        str | None,
        typer.Option("--matrix", "-m", help="Only clear this matrix key"),
    ] = None,
) -> None:
    """Remove cached builds of a module."""
    from llar.build.cache import BuildCache

    settings = get_settings()
    try:
        removed = BuildCache(settings.workspace_dir).delete(module, version, matrix)
    except LlarError as e:
        raise _fail(str(e)) from None
    if removed:
        console.print(f"[green]✓ Removed {removed} cache entr{'y' if removed == 1 else 'ies'}[/green]")
    else:
        console.print(f"[yellow]No matching cache entries for {module}[/yellow]")


if __name__ == "__main__":
    app()

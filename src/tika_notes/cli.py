#!/usr/bin/env python3
"""
tika: Things I Know About

Usage:
    tika index ~/notes                 # Build or update the index
    tika -s ~/notes query "tag:vim"    # Query it (one JSON object per line)
    tika -s ~/notes show some-note     # Show one indexed document

Designed to feed a fuzzy finder:
    tika query "tag:k8s" | jq -r .filename | fzf
"""

from __future__ import annotations

import difflib
import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__ as TIKA_VERSION
from .errors import TikaError


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def output(data: Any, as_json: bool = False) -> None:
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report a fatal error on stderr and exit.

    With --json-errors the error is a JSON object, otherwise an
    ``Error:`` line plus an optional ``Hint:`` line.
    """
    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, TikaError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            suggestion = error.details.get("suggestion")
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        if json_errors:
            payload = {"error": {"code": "INTERNAL_ERROR", "message": str(error)}}
            click.echo(json.dumps(payload), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


def _resolve_source(ctx: click.Context, source: Path | None) -> Path | None:
    if source is not None:
        return source
    return ctx.obj["config"].source


def _resolve_index(ctx: click.Context, source: Path | None) -> Path:
    from .config import resolve_index_path

    index_path = ctx.obj["index_path"] or ctx.obj["config"].index_path
    return resolve_index_path(index_path, source)


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=TIKA_VERSION, prog_name="tika")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML config file (default: ~/.config/tika/config.yaml, or TIKA_CONFIG)",
)
@click.option(
    "--source",
    "-s",
    type=click.Path(file_okay=False, path_type=Path),
    help="Vault directory (or TIKA_SOURCE / 'source:' in config)",
)
@click.option(
    "--index-path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Index file (default: <source>/.tika/index.json)",
)
@click.option("-v", "--verbose", count=True, help="More log output (-v info, -vv debug)")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    source: Path | None,
    index_path: Path | None,
    verbose: int,
    json_errors: bool,
):
    """tika: Things I Know About.

    Index a vault of Markdown + front-matter notes and query it.

    \b
    Query syntax (terms are AND-ed):
      tag:NAME        notes tagged NAME
      id:PREFIX       notes whose id starts with PREFIX
      link:ID         notes linking to ID
      backlink:ID     notes that are backlinks of ID
      anything else   fuzzy match on title, tags and id
    """
    from ._logging import set_verbosity
    from .config import load_config

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    set_verbosity(verbose)

    try:
        ctx.obj["config"] = load_config(config_path)
    except TikaError as exc:
        _handle_error(ctx, exc)

    ctx.obj["source"] = source
    ctx.obj["index_path"] = index_path


# ─────────────────────────────────────────────────────────────────────────────
# index
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument(
    "source_directory",
    required=False,
    type=click.Path(file_okay=False, path_type=Path),
)
@click.option("--glob", "pattern", help="Files to index, relative to the source (default: **/*.md)")
@click.option("--workers", type=click.IntRange(min=1), help="Parser threads")
@click.option("--rebuild", is_flag=True, help="Ignore the existing index and parse every file")
@click.option("--json", "as_json", is_flag=True, help="Output summary as JSON")
@click.pass_context
def index(
    ctx: click.Context,
    source_directory: Path | None,
    pattern: str | None,
    workers: int | None,
    rebuild: bool,
    as_json: bool,
):
    """Build or update the index for SOURCE_DIRECTORY.

    Only files whose modification time or size changed are re-read. Files
    that fail to parse are reported on stderr and skipped; the command still
    succeeds.

    \b
    Examples:
      tika index ~/notes
      tika index ~/notes --rebuild
      tika -s ~/notes index --json
    """
    from .errors import ConfigurationError
    from .indexer import build
    from .models import Index
    from .scanner import read_vault_file, scan_vault
    from .store import IndexStore

    config = ctx.obj["config"]
    source = source_directory or _resolve_source(ctx, ctx.obj["source"])

    try:
        if source is None:
            raise ConfigurationError(
                "No source directory given.",
                suggestion="Pass SOURCE_DIRECTORY, use --source, or set TIKA_SOURCE",
            )
        index_path = _resolve_index(ctx, source)
        listing = scan_vault(source, pattern or config.glob)

        store = IndexStore(index_path)
        with store.writer_lock():
            previous = Index() if rebuild else store.load_or_empty()
            result = build(
                previous,
                listing,
                read_vault_file(source),
                max_workers=workers or config.workers,
            )
            store.save(result.index)
    except TikaError as exc:
        _handle_error(ctx, exc)

    for diagnostic in result.diagnostics:
        click.echo(f"✗ {diagnostic.path}: {diagnostic.message}", err=True)

    stats = result.stats
    if as_json:
        output(
            {
                "index": str(index_path),
                "documents": len(result.index.documents),
                "stats": stats.model_dump(),
                "diagnostics": [d.model_dump(mode="json") for d in result.diagnostics],
            },
            as_json=True,
        )
    else:
        click.echo(
            f"✓ Indexed {len(result.index.documents)} documents "
            f"({stats.added} added, {stats.updated} updated, {stats.removed} removed, "
            f"{stats.failed} failed)"
        )


# ─────────────────────────────────────────────────────────────────────────────
# query
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("query_text", default="")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Max results")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["jsonl", "json"]),
    default="jsonl",
    show_default=True,
    help="One JSON object per line, or a single JSON array",
)
@click.pass_context
def query(ctx: click.Context, query_text: str, limit: int | None, fmt: str):
    """Query the index.

    Each result has id, filename, title, tags, score, author and date.
    No matches is not an error.

    \b
    Examples:
      tika query "tag:vim"
      tika query "backlink:kubernetes"
      tika query "deploy tag:k8s" --limit 5
      tika query "" --format json
    """
    from .query import evaluate, parse_query, to_json_array, to_json_lines
    from .store import IndexStore

    try:
        index_path = _resolve_index(ctx, _resolve_source(ctx, ctx.obj["source"]))
        loaded = IndexStore(index_path).load()
    except TikaError as exc:
        _handle_error(ctx, exc)

    parsed = parse_query(query_text)
    for error in parsed.errors:
        if ctx.obj.get("json_errors"):
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Warning: {error.message}", err=True)

    records = evaluate(loaded, parsed, limit=limit)
    if fmt == "json":
        click.echo(to_json_array(records))
    elif records:
        click.echo(to_json_lines(records))


# ─────────────────────────────────────────────────────────────────────────────
# show
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("doc_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, doc_id: str, as_json: bool):
    """Show one indexed document and its backlinks.

    \b
    Examples:
      tika show kubernetes
      tika show "Kubernetes.md" --json
    """
    from .errors import ErrorCode
    from .parser import normalize_link
    from .store import IndexStore

    try:
        index_path = _resolve_index(ctx, _resolve_source(ctx, ctx.obj["source"]))
        loaded = IndexStore(index_path).load()
    except TikaError as exc:
        _handle_error(ctx, exc)

    key = normalize_link(doc_id)
    document = loaded.documents.get(key)
    if document is None:
        matches = difflib.get_close_matches(key, list(loaded.documents), n=3, cutoff=0.6)
        details = {"suggestion": f"Did you mean: {', '.join(matches)}"} if matches else None
        _handle_error(ctx, TikaError(ErrorCode.DOCUMENT_NOT_FOUND, f"No document with id '{key}'", details))

    backlinks = sorted(loaded.backlinks_for(document.id))
    if as_json:
        data = document.model_dump(mode="json")
        data["backlinks"] = backlinks
        output(data, as_json=True)
        return

    click.echo(f"id:        {document.id}")
    click.echo(f"filename:  {document.path}")
    click.echo(f"title:     {document.title or ''}")
    click.echo(f"tags:      {', '.join(document.tags)}")
    if document.author:
        click.echo(f"author:    {document.author}")
    click.echo(f"links:     {', '.join(document.outgoing_links)}")
    click.echo(f"backlinks: {', '.join(backlinks)}")
    click.echo(f"hash:      {document.content_hash}")


def main():
    """Entry point for tika CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()

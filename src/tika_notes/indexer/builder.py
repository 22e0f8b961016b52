"""Incremental index builder.

Turns the previous Index plus a fresh file listing into a new Index:

1. Plan (sequential): derive each file's id, drop duplicates, and decide
   whether the prior Document can be carried over on mtime/size alone.
2. Load (parallel): read, hash and, if the content changed, parse every
   candidate on a thread pool. Jobs share no mutable state.
3. Merge (sequential): fold the outcomes in path order into a new
   ``documents`` mapping. Constructing the Index rebuilds backlinks and the
   tag index from scratch.

Files missing from the listing are dropped. A file that fails to read or
parse never aborts the build: it becomes a Diagnostic, and the prior
Document for its id (if any) is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from ..config import DEFAULT_WORKERS
from ..errors import ParseError, ParseErrorKind
from ..models import BuildResult, BuildStats, Diagnostic, Document, FileEntry, Index
from ..parser import document_id, hash_content, parse_document

log = logging.getLogger(__name__)

ReadFile = Callable[[str], bytes]


@dataclass(frozen=True)
class _Job:
    doc_id: str
    entry: FileEntry
    prior: Document | None


@dataclass(frozen=True)
class _Outcome:
    document: Document | None
    diagnostic: Diagnostic | None = None
    touched: bool = False  # content identical to prior, only mtime/size refreshed


def is_stale(prior: Document | None, entry: FileEntry) -> bool:
    """Cheap pre-check: does *entry* need to be read again?"""
    if prior is None:
        return True
    return (
        prior.modified_at != entry.mtime
        or prior.size != entry.size
        or prior.path != entry.path
    )


def _load(job: _Job, read_file: ReadFile) -> _Outcome:
    """Read and (if needed) parse one file. Runs on a worker thread."""
    entry = job.entry
    try:
        raw = read_file(entry.path)
    except OSError as e:
        return _Outcome(
            document=None,
            diagnostic=Diagnostic(
                path=entry.path,
                kind=ParseErrorKind.UNREADABLE,
                message=f"Cannot read file: {e}",
            ),
        )

    prior = job.prior
    if prior is not None and prior.path == entry.path and prior.content_hash == hash_content(raw):
        refreshed = prior.model_copy(update={"modified_at": entry.mtime, "size": entry.size})
        return _Outcome(document=refreshed, touched=True)

    try:
        document = parse_document(entry.path, raw, modified_at=entry.mtime, size=entry.size)
    except ParseError as e:
        return _Outcome(
            document=None,
            diagnostic=Diagnostic(path=entry.path, kind=e.kind, message=e.reason),
        )
    return _Outcome(document=document)


def build(
    previous: Index,
    file_listing: Iterable[FileEntry],
    read_file: ReadFile,
    *,
    max_workers: int | None = None,
) -> BuildResult:
    """Produce an updated Index from the previous one and a file listing.

    Args:
        previous: Index from the last run (empty on first run).
        file_listing: Every file currently in the vault.
        read_file: Returns the raw bytes of a listed path.
        max_workers: Parser thread pool size. Defaults to ``DEFAULT_WORKERS``.

    Returns:
        BuildResult with the new Index, per-file diagnostics and counts.
    """
    stats = BuildStats()
    diagnostics: list[Diagnostic] = []
    claimed: dict[str, str] = {}
    carried: dict[str, Document] = {}
    jobs: list[_Job] = []

    # 1. Plan
    for entry in sorted(file_listing, key=lambda e: e.path):
        doc_id = document_id(entry.path)
        if not doc_id:
            diagnostics.append(
                Diagnostic(
                    path=entry.path,
                    kind=ParseErrorKind.EMPTY_ID,
                    message="File name gives an empty id",
                )
            )
            stats.failed += 1
            continue
        if doc_id in claimed:
            diagnostics.append(
                Diagnostic(
                    path=entry.path,
                    kind=ParseErrorKind.DUPLICATE_ID,
                    message=f"Id {doc_id!r} already used by {claimed[doc_id]}",
                )
            )
            continue
        claimed[doc_id] = entry.path

        prior = previous.documents.get(doc_id)
        if is_stale(prior, entry):
            jobs.append(_Job(doc_id, entry, prior))
        else:
            carried[doc_id] = prior
            stats.unchanged += 1

    # 2. Load
    outcomes: list[_Outcome] = []
    if jobs:
        workers = max(1, min(max_workers or DEFAULT_WORKERS, len(jobs)))
        log.debug("Loading %d changed files with %d workers", len(jobs), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(lambda job: _load(job, read_file), jobs))

    # 3. Merge
    merged: dict[str, Document] = dict(carried)
    for job, outcome in zip(jobs, outcomes):
        if outcome.diagnostic is not None:
            diagnostics.append(outcome.diagnostic)
            stats.failed += 1
            if job.prior is not None:
                merged[job.doc_id] = job.prior
            continue

        merged[job.doc_id] = outcome.document
        if outcome.touched:
            stats.touched += 1
        elif job.prior is None:
            stats.added += 1
        else:
            stats.updated += 1

    stats.removed = sum(1 for doc_id in previous.documents if doc_id not in claimed)

    documents = {doc_id: merged[doc_id] for doc_id in sorted(merged)}
    index = Index(documents=documents)

    diagnostics.sort(key=lambda d: d.path)
    for diagnostic in diagnostics:
        log.info("Skipped %s: %s", diagnostic.path, diagnostic.message)
    log.info(
        "Built index: %d documents (%d added, %d updated, %d removed, %d failed)",
        len(documents),
        stats.added,
        stats.updated,
        stats.removed,
        stats.failed,
    )

    return BuildResult(index=index, diagnostics=diagnostics, stats=stats)

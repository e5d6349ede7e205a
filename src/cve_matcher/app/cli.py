from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import typer

from .container import Container
from ..config.settings import AppConfig
from ..core.domain.enums import PartitionState
from ..core.domain.models import Dependency, Vulnerability
from ..core.errors import CveMatcherError, ExceptionCollection
from ..infra.suppression_loader import load_suppressions


app = typer.Typer(help="CVE Matcher: identify vulnerable third-party artifacts using the NVD feeds")


@contextmanager
def provide_container() -> Iterator[Container]:
    container = Container()
    container.config.from_pydantic(AppConfig())
    container.init_resources()
    try:
        yield container
    finally:
        container.shutdown_resources()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr")) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _echo_errors(errors: ExceptionCollection) -> None:
    for e in errors.exceptions:
        typer.echo(f"  - {e}", err=True)


@app.command(help="Download new and modified NVD feed partitions into the local database.")
def update(force: bool = typer.Option(False, "--force", help="Check the feeds even if the last check is recent")) -> None:
    with provide_container() as container:
        uc = container.update_uc()
        try:
            result = uc.execute(force=force)
        except ExceptionCollection as e:
            typer.echo(f"Update incomplete: {len(e)} partition(s) failed", err=True)
            _echo_errors(e)
            raise typer.Exit(code=2 if e.fatal else 1)
        except CveMatcherError as e:
            typer.echo(f"Update failed: {e}", err=True)
            raise typer.Exit(code=2)

    if result.skipped:
        typer.echo("Database checked recently; skipping update (use --force to check anyway)")
        return
    committed = [p.id for p in result.partitions.values() if p.state is PartitionState.COMMITTED]
    if committed:
        typer.echo(f"Updated partitions: {', '.join(committed)}")
        typer.echo(f"Records imported: {result.records_imported}, removed: {result.records_deleted + result.records_cleaned}")
    else:
        typer.echo("Database is up to date")


@app.command(help="Scan files or directories and report known vulnerabilities per artifact.")
def scan(
    paths: list[Path] = typer.Argument(..., help="Files or directories to scan", metavar="PATH"),
    suppression: Optional[Path] = typer.Option(None, "--suppression", "-s", help="JSON suppression rule file"),
    as_json: bool = typer.Option(False, "--json", help="Print the results as JSON"),
) -> None:
    with provide_container() as container:
        uc = container.analyze_uc()
        errors: Optional[ExceptionCollection] = None
        try:
            rules = load_suppressions(suppression) if suppression else []
            dependencies = uc.execute(paths, suppression_rules=rules)
        except ExceptionCollection as e:
            if e.fatal or not isinstance(e.result, list):
                typer.echo(f"Scan failed: {e}", err=True)
                raise typer.Exit(code=2)
            errors = e
            dependencies = e.result
        except CveMatcherError as e:
            typer.echo(f"Scan failed: {e}", err=True)
            raise typer.Exit(code=2)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=2)

    if as_json:
        print(json.dumps([_dependency_payload(d) for d in dependencies], ensure_ascii=False, indent=2))
    else:
        _print_report(dependencies)

    if errors is not None:
        typer.echo(f"{len(errors)} error(s) occurred; results may be incomplete:", err=True)
        _echo_errors(errors)
        raise typer.Exit(code=1)


@app.command(help="Delete the local vulnerability database and downloaded feeds.")
def purge() -> None:
    with provide_container() as container:
        uc = container.purge_uc()
        try:
            uc.execute()
        except CveMatcherError as e:
            typer.echo(f"Purge failed: {e}", err=True)
            raise typer.Exit(code=2)
        typer.echo("Database purged")


@app.command(help="Clear the download cache.")
def clear() -> None:
    with provide_container() as container:
        uc = container.clear_cache_uc()
        uc.execute()
        typer.echo("Cache cleared")


def _severity(v: Vulnerability) -> str:
    return v.severity.name if v.severity else "-"


def _score(v: Vulnerability) -> str:
    score = v.highest_score
    return f"{score:.1f}" if score >= 0 else "-"


def _print_report(dependencies: Sequence[Dependency]) -> None:
    vulnerable = [d for d in dependencies if d.vulnerabilities]
    for d in dependencies:
        if not (d.identifiers or d.vulnerabilities or d.suppressed_vulnerabilities):
            continue
        ids = ", ".join(i.value for i in d.identifiers) or "-"
        print(f"{d.file_path}  [{ids}]")
        for v in sorted(d.vulnerabilities, key=lambda v: -v.highest_score):
            print(f"  {v.name:18} {_severity(v):9} {_score(v):>5}")
        for v in d.suppressed_vulnerabilities:
            print(f"  {v.name:18} suppressed{f' ({v.notes})' if v.notes else ''}")
    total = sum(len(d.vulnerabilities) for d in dependencies)
    print(f"{len(dependencies)} dependencies scanned, {len(vulnerable)} vulnerable, {total} vulnerabilities")


def _vulnerability_payload(v: Vulnerability) -> dict[str, Any]:
    return {
        "name": v.name,
        "severity": v.severity.name if v.severity else None,
        "score": v.highest_score if v.highest_score >= 0 else None,
        "cwes": list(v.cwes),
        "description": v.description,
        "references": [r.url for r in v.references],
        "notes": v.notes,
    }


def _dependency_payload(d: Dependency) -> dict[str, Any]:
    return {
        "file_path": str(d.file_path),
        "file_name": d.file_name,
        "sha1": d.sha1,
        "sha256": d.sha256,
        "related": sorted(d.related_ids),
        "package_ids": list(d.software_identifiers),
        "identifiers": [
            {"cpe": i.value, "confidence": i.confidence.value, "score": i.score}
            for i in d.identifiers
        ],
        "vulnerabilities": [_vulnerability_payload(v) for v in d.vulnerabilities],
        "suppressed_identifiers": [{"cpe": i.value, "notes": i.notes} for i in d.suppressed_identifiers],
        "suppressed_vulnerabilities": [_vulnerability_payload(v) for v in d.suppressed_vulnerabilities],
    }

"""
Allergy Scan - CLI Entry Point.

Usage:
    allergy-scan allergens                     List known allergens
    allergy-scan scan -a peanut -t "..."       Scan text for selected allergens
    allergy-scan scan -a milk --photo label.jpg
    allergy-scan admin add --name Peanut --keywords "peanut, groundnut"
    allergy-scan health                        Check configuration and backend
"""

import asyncio
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.errors import MarkupError
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from allergy_scan.errors import AllergyScanError
from allergy_scan.highlight import HIGHLIGHT_TAG
from allergy_scan.models import BackendStatus, InputMode, Severity

app = typer.Typer(
    name="allergy-scan",
    help="Allergy Scan - check text, label photos and documents for your allergens.",
    add_completion=False,
)
admin_app = typer.Typer(help="Manage allergen records in the store.")
app.add_typer(admin_app, name="admin")
console = Console()

SEVERITY_STYLES = {
    Severity.HIGH: "bold white on red",
    Severity.MEDIUM: "bold black on yellow",
    Severity.LOW: "bold white on blue",
}

STATUS_LABELS = {
    BackendStatus.CONNECTED: "[green]● connected[/green]",
    BackendStatus.CHECKING: "[yellow]● checking[/yellow]",
    BackendStatus.DISCONNECTED: "[red]● disconnected[/red]",
}


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with visible output."""
    from allergy_scan.config import settings

    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
) -> None:
    setup_logging(verbose)


def _keyword_preview(keywords: tuple[str, ...]) -> str:
    shown = ", ".join(keywords[:3])
    if len(keywords) > 3:
        shown += f" +{len(keywords) - 3}"
    return shown


def _to_rich(annotated: str) -> str:
    """Turn highlight markup into rich markup."""
    out = escape(annotated)
    for severity, style in SEVERITY_STYLES.items():
        out = out.replace(
            f'<{HIGHLIGHT_TAG} severity="{severity.value.lower()}">', f"[{style}]"
        )
    return out.replace(f"</{HIGHLIGHT_TAG}>", "[/]")


# =============================================================================
# Catalog / scan
# =============================================================================


@app.command()
def allergens() -> None:
    """List allergens known to the store."""
    asyncio.run(_list_allergens())


async def _list_allergens() -> None:
    from allergy_scan.catalog import AllergenCatalog
    from allergy_scan.client import AllergyApiClient

    async with AllergyApiClient() as client:
        catalog = AllergenCatalog(client)
        await catalog.load()

    console.print(f"Allergen database: {STATUS_LABELS[catalog.status]}")
    if catalog.error:
        console.print(f"[red]{escape(catalog.error)}[/red]")
        raise typer.Exit(1)

    table = Table(title="Allergens")
    table.add_column("ID", style="dim")
    table.add_column("Allergen", style="bold")
    table.add_column("Keywords")
    table.add_column("Severity")
    for record in catalog.snapshot():
        table.add_row(
            escape(record.id),
            escape(record.name),
            escape(_keyword_preview(record.keywords)),
            f"[{SEVERITY_STYLES[record.severity]}] {record.severity.value} [/]",
        )
    console.print(table)


@app.command()
def scan(
    allergen: list[str] = typer.Option(
        ..., "--allergen", "-a", help="Allergen id or name to scan for (repeatable)"
    ),
    text: str | None = typer.Option(None, "--text", "-t", help="Text to scan"),
    photo: Path | None = typer.Option(None, "--photo", help="Label photo (JPG/PNG)"),
    document: Path | None = typer.Option(None, "--document", help="Document (PDF/DOC/DOCX)"),
) -> None:
    """Scan text, a photo or a document for the selected allergens."""
    given = [(m, v) for m, v in (
        (InputMode.TEXT, text), (InputMode.PHOTO, photo), (InputMode.DOCUMENT, document),
    ) if v is not None]
    if len(given) != 1:
        console.print("[red]Give exactly one of --text, --photo or --document.[/red]")
        raise typer.Exit(2)
    mode, value = given[0]
    asyncio.run(_run_scan(allergen, mode, value))


async def _run_scan(names: list[str], mode: InputMode, value) -> None:
    from allergy_scan.client import AllergyApiClient
    from allergy_scan.report import format_match, headline, scan_totals
    from allergy_scan.wizard import build_wizard

    async with AllergyApiClient() as client:
        wizard = build_wizard(client)
        if not await wizard.start():
            console.print(f"Allergen database: {STATUS_LABELS[wizard.backend_status]}")
            console.print(f"[red]❌ {escape(str(wizard.last_error))}[/red]")
            raise typer.Exit(1)

        try:
            for name in names:
                wizard.toggle(_resolve_allergen(wizard.catalog, name))
            await wizard.advance()

            wizard.set_input_mode(mode)
            if mode is InputMode.TEXT:
                wizard.set_payload(value)
            else:
                wizard.set_file(value)

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Scanning...", total=100)
                wizard.session.add_progress_listener(
                    lambda v: progress.update(task, completed=v)
                )
                await wizard.advance()
        except AllergyScanError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(1)
        except OSError as e:
            console.print(f"[red]❌ Cannot read {value}: {e.strerror}[/red]")
            raise typer.Exit(1)

    report = wizard.report
    color = "green" if report.safe else "red"
    console.print(
        Panel.fit(
            f"[bold {color}]{headline(report)}[/bold {color}]\n[dim]{escape(report.timestamp)}[/dim]",
            title="Safety Report",
            border_style=color,
        )
    )

    annotated = wizard.highlighted_text()
    if not report.safe and annotated is not None:
        console.print("\n[bold]Detected Allergens & Source Text[/bold]")
        try:
            console.print(_to_rich(annotated))
        except MarkupError:
            console.print(annotated, markup=False)

    console.print(f"\n[bold]{scan_totals(report)}[/bold]")
    for match in report.matches:
        console.print(f"  [{SEVERITY_STYLES[match.severity]}] {escape(format_match(match))} [/]")


def _resolve_allergen(catalog, name: str) -> str:
    """Accept an allergen id or (case-insensitive) name."""
    if catalog.get(name) is not None:
        return name
    for record in catalog.snapshot():
        if record.name.lower() == name.lower():
            return record.id
    # Let the catalog report it as unknown
    return name


# =============================================================================
# Admin
# =============================================================================


async def _with_admin(action):
    from allergy_scan.admin import AdminConsole
    from allergy_scan.client import AllergyApiClient

    async with AllergyApiClient() as client:
        admin = AdminConsole(client)
        if not await admin.open():
            console.print(f"Backend: {STATUS_LABELS[admin.status]}")
            console.print("[red]❌ Backend not reachable[/red]")
            raise typer.Exit(1)
        try:
            return await action(admin)
        except AllergyScanError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(1)


@admin_app.command("add")
def admin_add(
    name: str = typer.Option(..., "--name", "-n", help="Allergy name"),
    keywords: str = typer.Option(..., "--keywords", "-k", help="Comma separated keywords"),
    severity: Severity = typer.Option(Severity.MEDIUM, "--severity", "-s", case_sensitive=False),
) -> None:
    """Add a new allergen."""
    values = {"name": name, "keywords": keywords, "severity": severity}
    record = asyncio.run(_with_admin(lambda admin: admin.save(values)))
    console.print(f"✅ Added successfully{f' ({record.id})' if record else ''}")


@admin_app.command("update")
def admin_update(
    allergen_id: str = typer.Argument(..., help="Allergen id"),
    name: str = typer.Option(..., "--name", "-n", help="Allergy name"),
    keywords: str = typer.Option(..., "--keywords", "-k", help="Comma separated keywords"),
    severity: Severity = typer.Option(Severity.MEDIUM, "--severity", "-s", case_sensitive=False),
) -> None:
    """Update an existing allergen."""
    values = {"name": name, "keywords": keywords, "severity": severity}
    asyncio.run(_with_admin(lambda admin: admin.save(values, allergen_id=allergen_id)))
    console.print("✅ Updated successfully")


@admin_app.command("delete")
def admin_delete(
    allergen_id: str = typer.Argument(..., help="Allergen id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an allergen. This action cannot be undone."""
    if not yes:
        typer.confirm(f"Delete allergen {allergen_id}? This action cannot be undone", abort=True)
    asyncio.run(_with_admin(lambda admin: admin.delete(allergen_id)))
    console.print("✅ Deleted")


# =============================================================================
# Misc
# =============================================================================


@app.command()
def health() -> None:
    """Check configuration and backend connectivity."""
    from allergy_scan.config import get_settings

    console.print("\n[bold]Allergy Scan Health Check[/bold]\n")
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"\n[red]❌ Configuration error: {e}[/red]")
        raise typer.Exit(1)

    console.print("✅ Configuration loaded")
    console.print(f"   Environment: {settings.allergy_env}")
    console.print(f"   Log level: {settings.log_level}")
    console.print(f"   Backend: {settings.allergy_api_url}")

    ok = asyncio.run(_check_backend())
    if not ok:
        console.print("❌ Allergen store not reachable")
        raise typer.Exit(1)
    console.print("✅ Allergen store reachable")
    console.print("\n[green]All checks passed![/green]")


async def _check_backend() -> bool:
    from allergy_scan.admin import AdminConsole
    from allergy_scan.client import AllergyApiClient

    async with AllergyApiClient() as client:
        return await AdminConsole(client).check_status()


@app.command()
def version() -> None:
    """Show version information."""
    from allergy_scan import __version__

    console.print(f"Allergy Scan version {__version__}")


if __name__ == "__main__":
    app()

"""Plain-text formatting of scan reports (clipboard/CLI output)."""

from .models import MatchSpan, ScanReport


def format_match(match: MatchSpan) -> str:
    """e.g. "Peanut (Keyword: peanut | HIGH risk)"."""
    return f"{match.allergen_name} (Keyword: {match.keyword_found} | {match.severity.value} risk)"


def headline(report: ScanReport) -> str:
    if report.safe:
        return "All Clear! No allergens detected."
    return f"{report.detected_count} Allergens Found"


def summarize(report: ScanReport) -> str:
    """One-line summary suitable for copying."""
    if report.safe:
        return "All Clear! No allergens detected."
    names = ", ".join(m.allergen_name for m in report.matches)
    return f"{report.detected_count} allergens found: {names}."


def scan_totals(report: ScanReport) -> str:
    return f"Scanned {report.total_allergens_selected} allergens | Found {report.detected_count}"

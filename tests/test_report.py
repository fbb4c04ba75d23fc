"""Tests for report text formatting."""

from allergy_scan.models import MatchSpan, ScanReport
from allergy_scan.report import format_match, headline, scan_totals, summarize


def make_report(safe: bool, names: list[str]) -> ScanReport:
    matches = tuple(
        MatchSpan(allergen_name=n, keyword_found=n.lower(), severity="HIGH") for n in names
    )
    return ScanReport(matches=matches, safe=safe, timestamp="t", total_allergens_selected=3)


def test_summarize_all_clear():
    assert summarize(make_report(True, [])) == "All Clear! No allergens detected."


def test_summarize_found():
    report = make_report(False, ["Peanut", "Milk"])
    assert summarize(report) == "2 allergens found: Peanut, Milk."
    assert headline(report) == "2 Allergens Found"


def test_format_match():
    match = MatchSpan.model_validate(
        {"allergen": "Peanut", "keyword_found": "peanut", "severity": "HIGH"}
    )
    assert format_match(match) == "Peanut (Keyword: peanut | HIGH risk)"


def test_scan_totals():
    assert scan_totals(make_report(False, ["Milk"])) == "Scanned 3 allergens | Found 1"

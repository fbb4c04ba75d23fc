"""Allergy Scan - allergen selection, scan workflow and match highlighting."""

__version__ = "0.1.0"

from allergy_scan.catalog import AllergenCatalog
from allergy_scan.client import AllergyApiClient
from allergy_scan.highlight import render
from allergy_scan.session import ScanSession
from allergy_scan.wizard import WizardStateMachine, build_wizard

__all__ = [
    "AllergenCatalog",
    "AllergyApiClient",
    "ScanSession",
    "WizardStateMachine",
    "build_wizard",
    "render",
]

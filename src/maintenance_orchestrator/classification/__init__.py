"""Outcome classification and the declarative operation catalog."""

from maintenance_orchestrator.classification.catalog import (
    CatalogError,
    OperationCatalog,
    load_catalog,
    parse_catalog,
)
from maintenance_orchestrator.classification.classifier import (
    Classification,
    OutcomeClassifier,
    classify_output,
)

__all__ = [
    "CatalogError",
    "Classification",
    "OperationCatalog",
    "OutcomeClassifier",
    "classify_output",
    "load_catalog",
    "parse_catalog",
]

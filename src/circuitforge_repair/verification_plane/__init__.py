"""Static checks and diagnostic normalization that run before any repair decision."""

from circuitforge_repair.verification_plane.circuit_findings import (
    attempt_timeout_diagnostic,
    compile_failure_diagnostic,
    extract_circuit_diagnostics,
    normalize_review_findings,
)
from circuitforge_repair.verification_plane.classifier import (
    ClassificationPolicy,
    ClassificationResult,
    advance_survivals,
    classify,
)
from circuitforge_repair.verification_plane.preflight import (
    collect_preflight_diagnostics,
    parse_endpoint,
)
from circuitforge_repair.verification_plane.source_parser import DesignModel, parse_design

__all__ = [
    "ClassificationPolicy",
    "ClassificationResult",
    "DesignModel",
    "advance_survivals",
    "attempt_timeout_diagnostic",
    "classify",
    "collect_preflight_diagnostics",
    "compile_failure_diagnostic",
    "extract_circuit_diagnostics",
    "normalize_review_findings",
    "parse_design",
    "parse_endpoint",
]

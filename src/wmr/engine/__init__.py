"""
Inheritance Resolution Engine.
"""

from .merge import deep_merge, entry_identity, merge_fragment, substitute_placeholders
from .resolver import resolve
from .validation import ValidationReport, check_resolved_configuration, validate_resolved

__all__ = [
    "ValidationReport",
    "check_resolved_configuration",
    "deep_merge",
    "entry_identity",
    "merge_fragment",
    "resolve",
    "substitute_placeholders",
    "validate_resolved",
]

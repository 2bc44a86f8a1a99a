"""
Templates — declarative descriptions of what to back up and restore.
"""

from .schema import (
    ApplicationEntry,
    ConditionalSection,
    ConfigurationFragment,
    FileEntry,
    InheritanceRule,
    MachineConfiguration,
    Prerequisite,
    RegistryEntry,
    Template,
    TemplateMetadata,
    TemplateSection,
    ValidationLevel,
)
from .store import TemplateStore, dump_template, load_template, parse_template, validate_schema

__all__ = [
    "ApplicationEntry",
    "ConditionalSection",
    "ConfigurationFragment",
    "FileEntry",
    "InheritanceRule",
    "MachineConfiguration",
    "Prerequisite",
    "RegistryEntry",
    "Template",
    "TemplateMetadata",
    "TemplateSection",
    "TemplateStore",
    "ValidationLevel",
    "dump_template",
    "load_template",
    "parse_template",
    "validate_schema",
]

"""
Pydantic models for the output of resolution.

A ResolvedConfiguration is a value: built fresh by every resolve() call,
frozen, and free of selectors, rules and conditions.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .templates.schema import Prerequisite, TemplateMetadata, TemplateSection, ValidationLevel


class ResolvedConfiguration(BaseModel):
    """The terminal value of the resolution pipeline.

    Attributes:
        metadata: The template's metadata.
        prerequisites: Prerequisite probes, in declaration order.
        backup: Resolved backup entries.
        restore: Resolved restore entries.
        validation_level: Level the configuration was validated at.
        machine_name: Machine the configuration was resolved for.
        hostname: Host the configuration was resolved for.
        applied_configurations: Names of machine configurations merged in.
        applied_rules: Names of inheritance rules whose condition held.
        applied_sections: Names of conditional sections merged in.
        warnings: Non-fatal validation findings.
    """

    model_config = ConfigDict(frozen=True)

    metadata: TemplateMetadata
    prerequisites: list[Prerequisite] = Field(default_factory=list)
    backup: TemplateSection = Field(default_factory=TemplateSection)
    restore: TemplateSection = Field(default_factory=TemplateSection)
    validation_level: ValidationLevel = ValidationLevel.MODERATE
    machine_name: str = ""
    hostname: str = ""
    applied_configurations: list[str] = Field(default_factory=list)
    applied_rules: list[str] = Field(default_factory=list)
    applied_sections: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def restore_entries(self) -> TemplateSection:
        """Restore section, or the backup section when none was declared."""
        return self.backup if self.restore.is_empty else self.restore

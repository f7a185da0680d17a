"""
Compliance Framework Profile Schema.

A profile is a named, versioned bundle of default values keyed by component
type. It is loaded once per orchestration run and treated as read-only
input to the configuration resolver (layer 2).

File format (YAML or JSON):
    name: enhanced
    version: "2024.1"
    description: Enhanced compliance posture
    sections:
      queue:
        encryption: {enabled: true, keyType: managed}
        retentionDays: 14
      worker:
        tracing: true
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ValidationError

from rampart.errors import MalformedProfileError


class ComplianceFrameworkProfile(BaseModel):
    """
    Defaults for one compliance posture.

    Attributes:
        name: Framework name (e.g. baseline, enhanced, maximum)
        version: Profile version
        description: Human-readable description
        sections: Component type -> default configuration
    """

    name: str = Field(..., min_length=1)
    version: str = Field(default="1")
    description: str = Field(default="")
    sections: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @classmethod
    def from_mapping(cls, data: Any, *, source: str = "<memory>") -> ComplianceFrameworkProfile:
        """
        Build a profile from raw (file-loaded) data.

        Raises:
            MalformedProfileError: If the data is not a valid profile
        """
        if not isinstance(data, dict):
            raise MalformedProfileError(
                f"Profile {source} must be a mapping, got {type(data).__name__}",
                details={"source": source},
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedProfileError(
                f"Profile {source} is invalid: {e.error_count()} error(s)",
                details={"source": source, "errors": e.errors(include_url=False, include_context=False)},
            ) from e

    def has_section(self, component_type: str) -> bool:
        return component_type in self.sections

    def section_for(self, component_type: str) -> dict[str, Any]:
        """
        Get the defaults section for a component type.

        An empty (null) section is treated as an empty mapping.

        Raises:
            KeyError: If the section does not exist
            MalformedProfileError: If the section is not a mapping
        """
        section = self.sections[component_type]
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise MalformedProfileError(
                f"Profile '{self.name}' section '{component_type}' must be a mapping, "
                f"got {type(section).__name__}",
                details={"framework": self.name, "section": component_type},
            )
        return section

"""Nominal marker base classes for model standardization.

`DomainModel` marks Pydantic-based domain models and `InternalDTO` marks
plain dataclass-based internal DTOs.
"""

from __future__ import annotations

from pydantic import BaseModel


class DomainModel(BaseModel):
    """Nominal marker for Pydantic-based domain models."""

    def __repr__(self) -> str:
        """Provide a concise, one-line summary of the object."""
        class_name = self.__class__.__name__
        for attr in ("url", "transport", "name"):
            if hasattr(self, attr):
                attr_value = getattr(self, attr)
                if attr_value is not None:
                    return f'<{class_name} {attr}="{attr_value}">'
        return f"<{class_name}>"


class InternalDTO:
    """Nominal marker for internal dataclass DTOs.

    This is a plain marker class intended to be mixed into dataclass
    definitions to make their intent explicit for mypy checks.
    """

"""
Columnar data frame models returned to the dashboard.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FrameField(BaseModel):
    """One column of a data frame."""

    name: str
    type: str = Field(description="time, string, number or json")
    values: List[Any] = Field(default_factory=list)
    labels: Optional[Dict[str, str]] = None


class FrameMeta(BaseModel):
    """Rendering hints for a data frame."""

    type: str
    preferred_visualization: Optional[str] = None
    custom: Dict[str, Any] = Field(default_factory=dict)


class DataFrame(BaseModel):
    """Named set of equally long columns."""

    name: str
    ref_id: str
    fields: List[FrameField] = Field(default_factory=list)
    meta: Optional[FrameMeta] = None

    def field(self, name: str) -> FrameField:
        """Look up a column by name."""
        for frame_field in self.fields:
            if frame_field.name == name:
                return frame_field
        raise KeyError(name)

    @property
    def length(self) -> int:
        return len(self.fields[0].values) if self.fields else 0

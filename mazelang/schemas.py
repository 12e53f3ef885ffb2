"""Pydantic schemas for MazeLang program documents.

Every program handed to the loader MUST validate against `ProgramDocument`.
Invalid documents raise ProgramStructureError.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ProgramStructureError


class FunctionDocument(BaseModel):
    """Schema for a user-defined function block."""
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1, description="Function name")
    body: List[Any] = Field(default_factory=list, description="Raw action nodes")

    @field_validator('body', mode='before')
    @classmethod
    def ensure_list(cls, v: Any) -> List[Any]:
        if v is None:
            return []
        return v


class ProgramDocument(BaseModel):
    """Schema for the top-level program emitted by the block editor."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: str = Field(min_length=1, description="Program format version")
    program_name: Optional[str] = Field(default=None, alias="programName")
    functions: List[FunctionDocument] = Field(default_factory=list)
    actions: List[Any] = Field(description="Top-level raw action nodes")

    @field_validator('version', mode='before')
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        """Accept numeric versions such as 1 or 1.0."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('functions', mode='before')
    @classmethod
    def ensure_functions(cls, v: Any) -> Any:
        if v is None:
            return []
        return v


def validate_program(data: Any) -> ProgramDocument:
    """Validate a decoded program document.

    Args:
        data: The decoded JSON document

    Returns:
        Validated ProgramDocument

    Raises:
        ProgramStructureError: If the document is not an object or fails validation
    """
    if not isinstance(data, dict):
        raise ProgramStructureError(
            f"Program must be a JSON object, got {type(data).__name__}"
        )
    try:
        return ProgramDocument.model_validate(data)
    except Exception as e:
        raise ProgramStructureError(
            f"Invalid program structure: {e}"
        ) from e


def raw_type(node: Any) -> Optional[str]:
    if isinstance(node, dict):
        t = node.get("type")
        return t if isinstance(t, str) else None
    return None


def first_key(node: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key among editor aliases (e.g. cond/condition)."""
    for k in keys:
        if k in node and node[k] is not None:
            return node[k]
    return default

"""Typed views over cluster resources returned as JSON."""

import base64
import binascii
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

_MISSING = object()


class Condition(BaseModel):
    """A status condition as found in `.status.conditions`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = Field(..., description="Condition type")
    status: str = Field("Unknown", description="True, False or Unknown (free-form for some CRDs)")
    reason: Optional[str] = Field(None, description="Machine-readable reason")
    message: Optional[str] = Field(None, description="Human-readable message")
    last_transition_time: Optional[str] = Field(None, alias="lastTransitionTime")

    @property
    def is_true(self) -> bool:
        return self.status == "True"

    @property
    def is_false(self) -> bool:
        return self.status == "False"


class Resource(BaseModel):
    """A cluster resource with structured access to its fields."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: Optional[str] = Field(None, alias="apiVersion")
    kind: str = Field("", description="Resource kind")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Resource":
        """Build a Resource from a decoded `-o json` document."""
        obj = obj or {}
        return cls(
            apiVersion=obj.get("apiVersion"),
            kind=obj.get("kind", ""),
            metadata=obj.get("metadata") or {},
            spec=obj.get("spec") or {},
            status=obj.get("status") or {},
            data=obj.get("data") or {},
            raw=obj,
        )

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    def field(self, path: str, default: Any = None) -> Any:
        """Project a dotted path, e.g. ``status.platformStatus.aws.region``.

        List elements can be addressed by index (``items.0.name``). Keys that
        themselves contain dots are written with a backslash escape, e.g.
        ``data.ca-bundle\\.crt``.

        Args:
            path: Dotted field path from the document root
            default: Value returned when any segment is absent

        Returns:
            The field value, or `default` when absent or explicitly null
        """
        node: Any = self.raw or self.model_dump(by_alias=True)
        for segment in _split_path(path):
            if isinstance(node, dict):
                node = node.get(segment, _MISSING)
            elif isinstance(node, list) and segment.isdigit():
                index = int(segment)
                node = node[index] if index < len(node) else _MISSING
            else:
                node = _MISSING
            if node is _MISSING or node is None:
                return default
        return node

    def conditions(self) -> List[Condition]:
        """Parsed `.status.conditions`; malformed entries are skipped."""
        result = []
        for item in self.status.get("conditions") or []:
            if isinstance(item, dict) and item.get("type"):
                result.append(Condition.model_validate(item))
        return result

    def condition(self, condition_type: str) -> Optional[Condition]:
        for cond in self.conditions():
            if cond.type == condition_type:
                return cond
        return None

    def decoded(self, key: str) -> Optional[str]:
        """Base64-decode a Secret data key; None when absent or undecodable."""
        value = self.data.get(key)
        if not value:
            return None
        try:
            return base64.b64decode(value).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None


def _split_path(path: str) -> List[str]:
    segments, current, escaped = [], [], False
    for char in path:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ".":
            segments.append("".join(current))
            current = []
        else:
            current.append(char)
    segments.append("".join(current))
    return [s for s in segments if s]

"""
Data types returned by the FlagDash client.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar, Union

T = TypeVar("T")

FlagValue = Union[bool, str, int, float, Dict[str, Any], list]


class FlagReason(str, Enum):
    """Why the server evaluated a flag to a particular value."""

    DISABLED = "disabled"  # Flag is turned off
    RULE_MATCH = "rule_match"  # Context matched a targeting rule
    VARIATION = "variation"  # Context was bucketed into an A/B variation
    ROLLOUT = "rollout"  # Context fell inside the rollout percentage
    DEFAULT = "default"  # Nothing matched, or evaluation failed

    @classmethod
    def parse(cls, value: Optional[str]) -> "FlagReason":
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT


class AiConfigFileType(str, Enum):
    """Classification of an AI config file."""

    AGENT = "agent"
    SKILL = "skill"
    RULE = "rule"


@dataclass
class FlagDetail(Generic[T]):
    """Full result of a flag evaluation."""

    key: str
    value: Optional[T]
    reason: FlagReason = FlagReason.DEFAULT
    variation_key: Optional[str] = None

    @classmethod
    def from_response(
        cls, data: Mapping[str, Any], key: str, default: Optional[T] = None
    ) -> "FlagDetail[T]":
        value = data.get("value")
        return cls(
            key=data.get("key") or key,
            value=default if value is None else value,
            reason=FlagReason.parse(data.get("reason")),
            variation_key=data.get("variation_key"),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "key": self.key,
            "value": self.value,
            "reason": self.reason.value,
            "variationKey": self.variation_key,
        }


@dataclass
class AiConfigFile:
    """A markdown/text file served as an AI config."""

    file_name: str
    file_type: AiConfigFileType
    content: str
    folder: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    """Any additional fields the server sent (id, metadata, timestamps...)."""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AiConfigFile":
        known = {"file_name", "file_type", "content", "folder"}
        return cls(
            file_name=data["file_name"],
            file_type=AiConfigFileType(data["file_type"]),
            content=data.get("content") or "",
            folder=data.get("folder"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        result = dict(self.extra)
        result.update(
            {
                "file_name": self.file_name,
                "file_type": self.file_type.value,
                "content": self.content,
                "folder": self.folder,
            }
        )
        return result


@dataclass
class FlagInfo:
    """A flag with its full definition (server keys only)."""

    key: str
    name: str = ""
    description: str = ""
    flag_type: str = "boolean"
    enabled: bool = False
    default_value: Any = None
    rules: List[Dict[str, Any]] = field(default_factory=list)
    rollout_percentage: Optional[int] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlagInfo":
        return cls(
            key=data["key"],
            name=data.get("name") or "",
            description=data.get("description") or "",
            flag_type=data.get("flag_type") or "boolean",
            enabled=bool(data.get("enabled", False)),
            default_value=data.get("default_value"),
            rules=list(data.get("rules") or []),
            rollout_percentage=data.get("rollout_percentage"),
            id=data.get("id"),
        )


@dataclass
class ConfigInfo:
    """A remote config with its full metadata (server keys only)."""

    key: str
    value: Any = None
    name: str = ""
    description: str = ""
    config_type: str = "json"
    tags: List[str] = field(default_factory=list)
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfigInfo":
        return cls(
            key=data["key"],
            value=data.get("value"),
            name=data.get("name") or "",
            description=data.get("description") or "",
            config_type=data.get("config_type") or "json",
            tags=list(data.get("tags") or []),
            id=data.get("id"),
        )

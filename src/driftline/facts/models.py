"""Data models for branch facts and their provenance."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FactStatus(Enum):
    """Lifecycle status of a single fact value."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REMOVED = "removed"


@dataclass
class FactValue:
    """One value asserted for a fact key, with provenance.

    Attributes:
        value: The asserted value text.
        message_id: Message that introduced this value.
        confidence: Classifier confidence, 0.0 to 1.0.
        status: Lifecycle status. Only the merge algorithm changes it.
        superseded_by: Message that superseded or removed this value.
    """

    value: str
    message_id: str
    confidence: float = 1.0
    status: FactStatus = FactStatus.ACTIVE
    superseded_by: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is FactStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "value": self.value,
            "messageId": self.message_id,
            "confidence": self.confidence,
            "status": self.status.value,
        }
        if self.superseded_by is not None:
            data["supersededBy"] = self.superseded_by
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FactValue":
        return cls(
            value=str(data["value"]),
            message_id=str(data["messageId"]),
            confidence=float(data.get("confidence", 1.0)),
            status=FactStatus(data.get("status", FactStatus.ACTIVE.value)),
            superseded_by=data.get("supersededBy"),
        )


# Fact key -> ordered value history
FactMap = dict[str, list[FactValue]]


@dataclass(frozen=True)
class ExtractedValue:
    """A candidate value proposed by the classifier."""

    value: str
    confidence: float = 1.0
    supersedes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExtractedFact:
    """A fact proposed by the classifier for the target branch.

    Attributes:
        key: snake_case fact key (e.g. 'destination', 'budget').
        values: Candidate values for the key.
        is_update: True if the classifier believes the key already exists.
    """

    key: str
    values: tuple[ExtractedValue, ...] = field(default_factory=tuple)
    is_update: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "isUpdate": self.is_update,
            "values": [
                {
                    "value": v.value,
                    "confidence": v.confidence,
                    "supersedes": list(v.supersedes),
                }
                for v in self.values
            ],
        }


def fact_map_to_dict(facts: FactMap) -> dict[str, list[dict[str, Any]]]:
    """Serialize a fact map for state blobs and JSON output."""
    return {key: [v.to_dict() for v in values] for key, values in facts.items()}


def fact_map_from_dict(data: dict[str, Any]) -> FactMap:
    """Rebuild a fact map from its serialized form."""
    return {key: [FactValue.from_dict(v) for v in values] for key, values in data.items()}


def active_facts(facts: FactMap) -> dict[str, list[FactValue]]:
    """Return only active values, dropping keys with none."""
    result: dict[str, list[FactValue]] = {}
    for key, values in facts.items():
        active = [v for v in values if v.is_active]
        if active:
            result[key] = active
    return result

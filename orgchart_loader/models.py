"""Records exchanged with the entity update and query services."""

from __future__ import annotations

import base64
import binascii
import datetime
import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


def _text(data: Mapping[str, Any], key: str) -> str:
    return data.get(key) or ""


@dataclass
class Kind:
    """Major and minor classification of an entity."""

    major: str = ""
    minor: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"major": self.major, "minor": self.minor}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Kind":
        data = data or {}
        return cls(major=_text(data, "major"), minor=_text(data, "minor"))


@dataclass
class TimeBasedValue:
    """A value that holds from a start time, optionally until an end time."""

    start_time: str = ""
    end_time: str = ""
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"startTime": self.start_time}
        if self.end_time:
            out["endTime"] = self.end_time
        out["value"] = self.value
        return out

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TimeBasedValue":
        data = data or {}
        return cls(
            start_time=_text(data, "startTime"),
            end_time=_text(data, "endTime"),
            value=data.get("value"),
        )


@dataclass
class AttributeValueCollection:
    """The time-based values of one attribute."""

    values: list[TimeBasedValue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"values": [value.to_dict() for value in self.values]}


@dataclass
class AttributeEntry:
    """A named attribute of an entity."""

    key: str = ""
    value: AttributeValueCollection = field(default_factory=AttributeValueCollection)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value.to_dict()}


@dataclass
class MetadataEntry:
    """A metadata key with an arbitrary value."""

    key: str = ""
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


@dataclass
class Relationship:
    """A named, time-bounded link from one entity to another."""

    related_entity_id: str = ""
    start_time: str = ""
    end_time: str = ""
    id: str = ""
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "relatedEntityId": self.related_entity_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "id": self.id,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Relationship":
        data = data or {}
        return cls(
            related_entity_id=_text(data, "relatedEntityId"),
            start_time=_text(data, "startTime"),
            end_time=_text(data, "endTime"),
            id=_text(data, "id"),
            name=_text(data, "name"),
        )


@dataclass
class RelationshipEntry:
    """A relationship stored under a key."""

    key: str = ""
    value: Relationship = field(default_factory=Relationship)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value.to_dict()}


def _attribute_entry_from_dict(data: Mapping[str, Any]) -> AttributeEntry:
    collection = data.get("value") or {}
    values = [TimeBasedValue.from_dict(item) for item in collection.get("values") or []]
    return AttributeEntry(key=_text(data, "key"), value=AttributeValueCollection(values))


@dataclass
class Entity:
    """An entity with its kind, name, metadata, attributes and relationships."""

    id: str = ""
    kind: Kind = field(default_factory=Kind)
    created: str = ""
    terminated: str = ""
    name: TimeBasedValue = field(default_factory=TimeBasedValue)
    metadata: list[MetadataEntry] = field(default_factory=list)
    attributes: list[AttributeEntry] = field(default_factory=list)
    relationships: list[RelationshipEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.id:
            out["id"] = self.id
        out["kind"] = self.kind.to_dict()
        if self.created:
            out["created"] = self.created
        if self.terminated:
            out["terminated"] = self.terminated
        out["name"] = self.name.to_dict()
        if self.metadata:
            out["metadata"] = [entry.to_dict() for entry in self.metadata]
        if self.attributes:
            out["attributes"] = [entry.to_dict() for entry in self.attributes]
        if self.relationships:
            out["relationships"] = [entry.to_dict() for entry in self.relationships]
        return out

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Entity":
        data = data or {}
        return cls(
            id=_text(data, "id"),
            kind=Kind.from_dict(data.get("kind")),
            created=_text(data, "created"),
            terminated=_text(data, "terminated"),
            name=TimeBasedValue.from_dict(data.get("name")),
            metadata=[
                MetadataEntry(key=_text(item, "key"), value=item.get("value"))
                for item in data.get("metadata") or []
            ],
            attributes=[_attribute_entry_from_dict(item) for item in data.get("attributes") or []],
            relationships=[
                RelationshipEntry(
                    key=_text(item, "key"), value=Relationship.from_dict(item.get("value"))
                )
                for item in data.get("relationships") or []
            ],
        )


@dataclass
class SearchCriteria:
    """Filters for an entity search; empty fields are left out."""

    id: str = ""
    kind: Optional[Kind] = None
    name: str = ""
    created: str = ""
    terminated: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.id:
            out["id"] = self.id
        if self.kind is not None:
            out["kind"] = self.kind.to_dict()
        if self.name:
            out["name"] = self.name
        if self.created:
            out["created"] = self.created
        if self.terminated:
            out["terminated"] = self.terminated
        return out


@dataclass
class SearchResult:
    """One entity found by a search."""

    id: str = ""
    kind: Kind = field(default_factory=Kind)
    name: str = ""
    created: str = ""
    terminated: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SearchResult":
        data = data or {}
        return cls(
            id=_text(data, "id"),
            kind=Kind.from_dict(data.get("kind")),
            name=_text(data, "name"),
            created=_text(data, "created"),
            terminated=_text(data, "terminated"),
        )


@dataclass
class AttributeValue:
    """A single time-based attribute value."""

    start: str = ""
    end: str = ""
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"start": self.start}
        if self.end:
            out["end"] = self.end
        out["value"] = self.value
        return out


def unmarshal_name(data: str | bytes) -> str:
    """Decode a name given either as a JSON string or as a base64 protobuf value object."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid name payload: {exc}") from exc
    if parsed is None:
        return ""
    if isinstance(parsed, str):
        return parsed
    if not isinstance(parsed, dict):
        raise ValueError("name must be a JSON string or object")
    encoded = parsed.get("value") or ""
    if not isinstance(encoded, str):
        raise ValueError("name value must be a string")
    try:
        decoded = base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 name value: {exc}") from exc
    return decoded.decode("utf-8", errors="replace")


def to_iso_date(date_str: str) -> str:
    """Turn a YYYY-MM-DD date into an RFC 3339 timestamp at midnight UTC."""
    text = date_str.strip()
    if not _DATE_PATTERN.fullmatch(text):
        raise ValueError(f"failed to parse date: {date_str!r}")
    try:
        date = datetime.date.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"failed to parse date: {date_str!r}") from exc
    return f"{date.isoformat()}T00:00:00Z"
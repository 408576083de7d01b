"""HTTP client for the entity update and query services."""

from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import quote_plus, urlencode

import requests

from .models import Entity, Relationship, SearchCriteria, SearchResult


class ApiError(Exception):
    """A request to the services failed or returned something unexpected."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Client:
    """Talks to the update service and the query service."""

    def __init__(self, update_url: str, query_url: str, timeout: float = 30.0) -> None:
        self.update_url = update_url
        self.query_url = query_url
        self.timeout = timeout
        self._session = requests.Session()

    def _send(self, method: str, url: str, action: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"failed to {action}: {exc}") from exc

    @staticmethod
    def _expect(response: requests.Response, status: int, with_body: bool = False) -> None:
        if response.status_code == status:
            return
        message = f"unexpected status code: {response.status_code}"
        if with_body:
            message += f", body: {response.text}"
        raise ApiError(message, response.status_code)

    @staticmethod
    def _decode(response: requests.Response, expected: Optional[type] = None) -> Any:
        try:
            data = response.json()
        except ValueError as exc:
            raise ApiError(f"failed to decode response: {exc}") from exc
        if expected is not None and data is not None and not isinstance(data, expected):
            raise ApiError(f"failed to decode response: expected {expected.__name__}")
        return data

    def create_entity(self, entity: Entity) -> Entity:
        """Create an entity and return it as the service stored it."""
        response = self._send("POST", self.update_url, "create entity", json=entity.to_dict())
        self._expect(response, 201)
        return Entity.from_dict(self._decode(response, dict))

    def update_entity(self, entity_id: str, entity: Entity) -> Entity:
        """Update an existing entity."""
        url = f"{self.update_url}/{quote_plus(entity_id)}"
        response = self._send("PUT", url, "update entity", json=entity.to_dict())
        self._expect(response, 200)
        return Entity.from_dict(self._decode(response, dict))

    def delete_entity(self, entity_id: str) -> None:
        """Delete an entity."""
        response = self._send("DELETE", f"{self.update_url}/{entity_id}", "delete entity")
        self._expect(response, 204)

    def get_root_entities(self, kind: str) -> list[str]:
        """Return the IDs of root entities of a kind."""
        url = f"{self.query_url}/root?{urlencode({'kind': kind})}"
        response = self._send("GET", url, "get root entities")
        self._expect(response, 200)
        data = self._decode(response, dict) or {}
        return list(data.get("body") or [])

    def search_entities(self, criteria: SearchCriteria) -> list[SearchResult]:
        """Search for entities, decoding each hex-encoded name."""
        response = self._send(
            "POST", f"{self.query_url}/search", "search entities", json=criteria.to_dict()
        )
        self._expect(response, 200)
        data = self._decode(response, dict) or {}
        results = [SearchResult.from_dict(item) for item in data.get("body") or []]
        for result in results:
            result.name = _decode_hex_name(result.name)
        return results

    def get_entity_metadata(self, entity_id: str) -> Optional[dict[str, Any]]:
        """Return the metadata of an entity."""
        response = self._send("GET", f"{self.query_url}/{entity_id}/metadata", "get entity metadata")
        self._expect(response, 200)
        return self._decode(response, dict)

    def get_entity_attribute(
        self, entity_id: str, attribute_name: str, start_time: str = "", end_time: str = ""
    ) -> Any:
        """Return an attribute of an entity, optionally limited to a time range."""
        url = f"{self.query_url}/{entity_id}/attributes/{attribute_name}"
        if start_time:
            url += f"?startTime={start_time}"
            if end_time:
                url += f"&endTime={end_time}"
        response = self._send("GET", url, "get entity attribute")
        return self._decode(response)

    def get_related_entities(self, entity_id: str, query: Relationship) -> list[Relationship]:
        """Return the relationships of an entity that match a query."""
        url = f"{self.query_url}/{quote_plus(entity_id)}/relations"
        response = self._send("POST", url, "get related entities", json=query.to_dict())
        self._expect(response, 200, with_body=True)
        return [Relationship.from_dict(item) for item in self._decode(response, list) or []]

    def get_all_related_entities(self, entity_id: str) -> list[Relationship]:
        """Return every relationship of an entity."""
        url = f"{self.query_url}/{quote_plus(entity_id)}/allrelations"
        response = self._send(
            "POST",
            url,
            "get all related entities",
            headers={"Content-Type": "application/json"},
        )
        self._expect(response, 200)
        return [Relationship.from_dict(item) for item in self._decode(response, list) or []]


def _decode_hex_name(raw: str) -> str:
    try:
        wrapper = json.loads(raw)
    except ValueError as exc:
        raise ApiError(f"failed to unmarshal protobuf name: {exc}") from exc
    if not isinstance(wrapper, dict):
        raise ApiError("failed to unmarshal protobuf name: expected an object")
    value = wrapper.get("value") or ""
    if not isinstance(value, str):
        raise ApiError("failed to unmarshal protobuf name: value is not a string")
    try:
        decoded = bytes.fromhex(value)
    except ValueError as exc:
        raise ApiError(f"failed to decode hex value: {exc}") from exc
    return decoded.decode("utf-8", errors="replace")
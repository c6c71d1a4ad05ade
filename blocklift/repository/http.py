"""
HTTP content repository for Blocklift.

Talks to a JSON:API content management API (DatoCMS CMA layout) with httpx
and converts its resource envelopes into the plain models and dictionaries
the engine works with.
"""

import httpx
import logging
from typing import Any, Dict, Iterator, List, Optional

from ..errors import RepositoryError
from ..models import TypeDefinition, FieldDefinition
from ..config import config
from .base import ContentRepository

TYPE_ATTRIBUTES = ("name", "api_key", "modular_block", "sortable", "draft_mode_active",
                   "collection_appearance", "all_locales_required")


class HttpRepository(ContentRepository):
    """
    Content repository backed by the remote content management API.
    """

    def __init__(self, api_token: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, page_size: Optional[int] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize the HTTP repository.

        Args:
            api_token: Full-access API token (defaults to the configured environment variable)
            base_url: API base URL (defaults to config value)
            timeout: Request timeout in seconds (defaults to config value)
            page_size: Records fetched per page (defaults to config value)
            transport: Optional httpx transport, used by tests
        """
        token = api_token or config.api_token
        if not token:
            raise RepositoryError("No API token configured")
        self.base_url = (base_url or config.api_base_url).rstrip("/")
        self.page_size = page_size or config.page_size
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or config.api_timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/vnd.api+json",
                "X-Api-Version": "3",
            },
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def close(self):
        self.client.close()

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Perform one API call and return the decoded JSON body.

        Raises:
            RepositoryError: On transport errors and non-2xx responses
        """
        try:
            response = self.client.request(method, path, params=params, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logging.error(f"{method} {path} failed with {e.response.status_code}: {e.response.text}")
            raise RepositoryError(
                f"{method} {path} failed with HTTP {e.response.status_code}: {e.response.text}",
                e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logging.error(f"{method} {path} failed: {e}")
            raise RepositoryError(f"Error communicating with content API: {e}") from e

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # Types

    def list_types(self) -> List[TypeDefinition]:
        body = self._request("GET", "/item-types")
        return [_to_type(resource) for resource in body.get("data", [])]

    def find_type(self, type_id: str) -> TypeDefinition:
        return _to_type(self._request("GET", f"/item-types/{type_id}")["data"])

    def create_type(self, attributes: Dict[str, Any]) -> TypeDefinition:
        payload = {"data": {
            "type": "item_type",
            "attributes": {k: v for k, v in attributes.items() if k in TYPE_ATTRIBUTES},
        }}
        return _to_type(self._request("POST", "/item-types", payload=payload)["data"])

    def update_type(self, type_id: str, attributes: Dict[str, Any]) -> TypeDefinition:
        data: Dict[str, Any] = {
            "type": "item_type",
            "id": type_id,
            "attributes": {k: v for k, v in attributes.items() if k in TYPE_ATTRIBUTES},
        }
        if "title_field" in attributes:
            title_field = attributes["title_field"]
            data["relationships"] = {
                "title_field": {"data": {"type": "field", "id": title_field} if title_field else None}
            }
        return _to_type(self._request("PUT", f"/item-types/{type_id}", payload={"data": data})["data"])

    def destroy_type(self, type_id: str) -> None:
        self._request("DELETE", f"/item-types/{type_id}")

    # Fields

    def list_fields(self, type_id: str) -> List[FieldDefinition]:
        body = self._request("GET", f"/item-types/{type_id}/fields")
        fields = [_to_field(resource) for resource in body.get("data", [])]
        return sorted(fields, key=lambda f: f.position)

    def find_field(self, field_id: str) -> FieldDefinition:
        return _to_field(self._request("GET", f"/fields/{field_id}")["data"])

    def create_field(self, type_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        payload = {"data": _field_resource(attributes)}
        return _to_field(self._request("POST", f"/item-types/{type_id}/fields", payload=payload)["data"])

    def update_field(self, field_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        resource = _field_resource(attributes)
        resource["id"] = field_id
        return _to_field(self._request("PUT", f"/fields/{field_id}", payload={"data": resource})["data"])

    def destroy_field(self, field_id: str) -> None:
        self._request("DELETE", f"/fields/{field_id}")

    # Records

    def iter_records(self, type_id: str, nested: bool = True) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            params = {
                "filter[type]": type_id,
                "version": "current",
                "page[offset]": offset,
                "page[limit]": self.page_size,
            }
            if nested:
                params["nested"] = "true"
            body = self._request("GET", "/items", params=params)
            page = body.get("data", [])
            for resource in page:
                yield _to_record(resource)
            offset += len(page)
            total = body.get("meta", {}).get("total_count", offset)
            if not page or offset >= total:
                break

    def find_record(self, record_id: str, nested: bool = True) -> Dict[str, Any]:
        params = {"version": "current"}
        if nested:
            params["nested"] = "true"
        return _to_record(self._request("GET", f"/items/{record_id}", params=params)["data"])

    def create_record(self, type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"data": {
            "type": "item",
            "attributes": attributes,
            "relationships": {"item_type": {"data": {"type": "item_type", "id": type_id}}},
        }}
        return _to_record(self._request("POST", "/items", payload=payload)["data"])

    def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"data": {"type": "item", "id": record_id, "attributes": attributes}}
        return _to_record(self._request("PUT", f"/items/{record_id}", payload=payload)["data"])

    # Project

    def list_locales(self) -> List[str]:
        site = self._request("GET", "/site")["data"]
        return list(site.get("attributes", {}).get("locales", []))


def _relationship_id(resource: Dict[str, Any], name: str) -> Optional[str]:
    data = (resource.get("relationships") or {}).get(name, {}).get("data")
    return data.get("id") if isinstance(data, dict) else None


def _to_type(resource: Dict[str, Any]) -> TypeDefinition:
    attributes = resource.get("attributes", {})
    return TypeDefinition(
        id=resource["id"],
        name=attributes.get("name", ""),
        api_key=attributes.get("api_key", ""),
        modular_block=bool(attributes.get("modular_block", False)),
        title_field_id=_relationship_id(resource, "title_field"),
    )


def _to_field(resource: Dict[str, Any]) -> FieldDefinition:
    attributes = resource.get("attributes", {})
    return FieldDefinition(
        id=resource["id"],
        label=attributes.get("label", ""),
        api_key=attributes.get("api_key", ""),
        field_type=attributes.get("field_type", ""),
        item_type_id=_relationship_id(resource, "item_type"),
        localized=bool(attributes.get("localized", False)),
        validators=attributes.get("validators") or {},
        appearance=attributes.get("appearance") or {},
        position=attributes.get("position") or 0,
        hint=attributes.get("hint"),
        default_value=attributes.get("default_value"),
        fieldset=_relationship_id(resource, "fieldset"),
    )


def _field_resource(attributes: Dict[str, Any]) -> Dict[str, Any]:
    resource: Dict[str, Any] = {
        "type": "field",
        "attributes": {k: v for k, v in attributes.items() if k != "fieldset"},
    }
    if "fieldset" in attributes:
        fieldset = attributes["fieldset"]
        resource["relationships"] = {
            "fieldset": {"data": {"type": "fieldset", "id": fieldset} if fieldset else None}
        }
    return resource


def _to_record(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a record resource: id, item_type and the field values."""
    record = {
        "id": resource["id"],
        "item_type": {"type": "item_type", "id": _relationship_id(resource, "item_type")},
    }
    record.update(resource.get("attributes", {}))
    return record

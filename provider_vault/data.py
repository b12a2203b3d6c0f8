"""Provider credential documents.

A ``ProviderCredential`` is one element of the ``providers`` list stored in an
account record. Documents use camelCase keys on the wire; unknown keys are
kept so a read-modify-write never drops data written by other components.
"""
from typing import Any, Optional
from datetime import datetime
from collections.abc import Iterable

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import StoreError


class ProviderCredential(BaseModel):
    """Encrypted API key of one provider plus its verification metadata."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    provider: str
    # null or missing envelopes fail later as FormatError on decrypt
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    is_active: bool = Field(default=True, alias="isActive")
    is_verified: bool = Field(default=False, alias="isVerified")
    selected_model: Optional[str] = Field(default=None, alias="selectedModel")
    available_models: list[str] = Field(
        default_factory=list, alias="availableModels"
    )
    last_verified: Optional[datetime] = Field(default=None, alias="lastVerified")
    settings: dict[str, Any] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f'<ProviderCredential [{self.provider}] '
            f'active:{self.is_active} verified:{self.is_verified}>'
        )

    __str__ = __repr__

    def with_api_key(self, envelope: str) -> "ProviderCredential":
        """Return a copy holding a different ``apiKey`` envelope."""
        return self.model_copy(update={"api_key": envelope})

    def to_document(self) -> dict[str, Any]:
        """Return the persisted (camelCase) document.

        ``lastVerified`` is omitted while unset.
        """
        doc = self.model_dump(by_alias=True, mode="json")
        if doc.get("lastVerified") is None:
            doc.pop("lastVerified", None)
        return doc

    def public_view(self) -> dict[str, Any]:
        """Document without the ``apiKey`` field, safe to return to clients."""
        doc = self.to_document()
        doc.pop("apiKey", None)
        return doc


def parse_providers(documents: Any) -> list[ProviderCredential]:
    """Build credentials from a decoded ``providers`` value.

    ``None`` is treated as an empty list. Undecodable JSON and documents
    that are not provider objects raise :class:`StoreError`.
    """
    if documents is None:
        return []
    try:
        if isinstance(documents, (bytes, str)):
            documents = orjson.loads(documents)
        if documents is None:
            return []
        if not isinstance(documents, list):
            raise StoreError("Stored providers value is not a list")
        return [ProviderCredential.model_validate(doc) for doc in documents]
    except orjson.JSONDecodeError as err:
        raise StoreError(f"Invalid provider documents: {err}") from err
    except ValidationError as err:
        # only field locations; the error text would echo stored values
        fields = ", ".join(
            ".".join(str(part) for part in e["loc"]) for e in err.errors()
        )
        raise StoreError(f"Invalid provider documents ({fields})") from err


def dump_providers(providers: Iterable[ProviderCredential]) -> bytes:
    """Encode a provider list as one JSON document (orjson bytes)."""
    return orjson.dumps([p.to_document() for p in providers])

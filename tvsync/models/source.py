"""Pydantic models for provider source descriptors."""
from __future__ import annotations

import enum
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SourceKind(str, enum.Enum):
    M3U = "m3u"
    XTREAM = "xtream"


class SourceDescriptor(BaseModel):
    """One IPTV provider.

    Immutable: an edit produces a new descriptor via :meth:`replace`, it never
    mutates the stored one. ``password`` is the opaque (possibly encrypted)
    blob as stored; it is decrypted only when an Xtream client is built.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str = "New Source"
    kind: SourceKind = SourceKind.M3U
    url: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    epg_url: Optional[str] = None
    enabled: bool = True

    @model_validator(mode="after")
    def _check_credentials(self) -> "SourceDescriptor":
        if self.kind == SourceKind.XTREAM and (not self.username or not self.password):
            raise ValueError("Xtream Codes sources require a username and a password")
        if not self.url:
            raise ValueError("Source URL is required")
        return self

    def replace(self, **changes) -> "SourceDescriptor":
        """Return a new, re-validated descriptor with *changes* applied (id is kept)."""
        data = self.model_dump()
        data.update(changes)
        data["id"] = self.id
        return SourceDescriptor.model_validate(data)

    @property
    def display_name(self) -> str:
        return self.name or self.id

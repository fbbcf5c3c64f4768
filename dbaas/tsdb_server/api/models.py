"""
Wire models for the WebSocket protocol.

Every frame is a JSON envelope {"id", "type", "data"} where data is itself a
JSON-encoded string holding the type-specific payload.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

API_KEY = "api-key"
INSERT = "insert"
QUERY = "query"
QUERY_USER = "query-user"
DELETE_USER = "delete-user"


class Envelope(BaseModel):
    """Outer request frame."""
    id: str = Field(..., strict=True, description="Echoed back in the response")
    type: str = Field(..., strict=True, description="api-key, insert, query, query-user or delete-user")
    data: str = Field(..., strict=True, description="JSON-encoded payload")


class InsertItem(BaseModel):
    """One record to insert."""
    ts: int = Field(..., strict=True)
    uid: str = Field(..., strict=True, min_length=1)
    data: str = Field(..., strict=True)
    collection: str = Field(..., strict=True, min_length=1)


InsertBatch = TypeAdapter(list[InsertItem])


class QueryRequest(BaseModel):
    """Latest record per user at or before ts; a single user if uid is set."""
    ts: int = Field(..., strict=True)
    collection: str = Field(..., strict=True, min_length=1)
    uid: str | None = Field(None, strict=True)


class QueryUserRequest(BaseModel):
    """Records of one user between two timestamps, inclusive."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str = Field(..., strict=True, min_length=1)
    from_ts: int = Field(..., strict=True, alias="from")
    to_ts: int = Field(..., strict=True, alias="to")
    collection: str = Field(..., strict=True, min_length=1)


class DeleteUserRequest(BaseModel):
    """Delete a user from one collection, or from all when collection is empty."""
    uid: str = Field(..., strict=True, min_length=1)
    collection: str | None = Field(None, strict=True)

"""
Base model for MongoDB document models.

PyObjectId lets pydantic validate and serialize BSON ObjectIds.

MongoBaseModel owns the datetime convention at the storage boundary:
pymongo hands back naive datetimes that are implicitly UTC, so documents
are normalised to timezone-aware UTC on the way in (from_mongo) and back
to naive UTC on the way out (to_mongo).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

from shared.datetime_utils import ensure_utc, to_naive_utc


class PyObjectId(ObjectId):
    """BSON ObjectId accepted as an ObjectId or its 24-char hex string."""

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.to_string_ser_schema(when_used="json"),
        )

    @classmethod
    def _validate(cls, v: Any) -> ObjectId:
        if isinstance(v, ObjectId):
            return v
        if isinstance(v, str) and ObjectId.is_valid(v):
            return ObjectId(v)
        raise ValueError(f"Invalid ObjectId: {v!r}")


def _map_datetimes(value: Any, convert) -> Any:
    if isinstance(value, datetime):
        return convert(value)
    if isinstance(value, dict):
        return {k: _map_datetimes(v, convert) for k, v in value.items()}
    if isinstance(value, list):
        return [_map_datetimes(v, convert) for v in value]
    return value


class MongoBaseModel(BaseModel):
    """Document with the MongoDB ``_id`` exposed as ``id``."""

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    def to_mongo(self) -> dict:
        """Dict ready for insert: ``_id`` key (dropped while unset), naive-UTC datetimes."""
        data = self.model_dump(by_alias=True)
        if data.get("_id") is None:
            data.pop("_id", None)
        return _map_datetimes(data, to_naive_utc)

    @classmethod
    def from_mongo(cls, data: Optional[dict]) -> Optional["MongoBaseModel"]:
        """Model from a raw document, or None when the lookup found nothing."""
        if data is None:
            return None
        return cls.model_validate(_map_datetimes(data, ensure_utc))

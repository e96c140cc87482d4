"""Response envelope and pagination shared by every endpoint."""

import math
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaginationMeta(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)


def _dump(data: Any, exclude_none: bool) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
    if isinstance(data, list):
        return [_dump(item, exclude_none) for item in data]
    return data


def ok(data: Any, meta: PaginationMeta | None = None, exclude_none: bool = False) -> dict:
    """Wrap ``data`` in the success envelope."""
    body = {"success": True, "data": _dump(data, exclude_none)}
    if meta is not None:
        body["meta"] = meta.model_dump(by_alias=True)
    return body

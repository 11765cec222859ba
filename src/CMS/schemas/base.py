from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, RootModel


class APIModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
    )


class FreeObject(RootModel[dict[str, Any]]):
    root: dict[str, Any]

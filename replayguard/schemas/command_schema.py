from typing import Any

from pydantic import BaseModel, Field


class Command(BaseModel):
    action: str = Field(..., min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

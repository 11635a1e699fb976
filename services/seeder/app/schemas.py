from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SeedResponse(StrictModel):
    message: str


class SeedErrorResponse(StrictModel):
    error: str


class HealthResponse(StrictModel):
    ok: bool

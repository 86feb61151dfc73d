"""Pydantic schemas for the AI Gateway API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SimulationFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_fail_adapter: list[str] = Field(default_factory=list, alias="forceFailAdapter", max_length=10)
    force_fail_all: bool = Field(False, alias="forceFailAll")

    def to_policy_dict(self) -> dict[str, Any]:
        return {"forceFailAdapter": self.force_fail_adapter, "forceFailAll": self.force_fail_all}


class OperationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operation: str = Field(min_length=1, max_length=64)
    params: dict[str, Any] = Field(default_factory=dict)
    simulation: SimulationFlags | None = None
    # Skip the result cache for this call, neither reading nor storing
    force_refresh: bool = Field(False, alias="forceRefresh")


class ScenarioRequest(BaseModel):
    scenario: str = Field(min_length=1, max_length=64)
    operation: str = Field("generateText", min_length=1, max_length=64)
    params: dict[str, Any] | None = None


class ProviderToggle(BaseModel):
    enabled: bool


class ZeroCostToggle(BaseModel):
    enabled: bool


class ProviderStatusResponse(BaseModel):
    operation: str
    status: dict[str, bool]
    priority_order: list[str] = Field(serialization_alias="priorityOrder")
    servable: bool
    zero_cost_mode: bool = Field(serialization_alias="zeroCostMode")


class CacheFlushResponse(BaseModel):
    flushed: int

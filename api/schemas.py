from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class FilterSpecModel(BaseModel):
    ev_type: Literal["All", "BEV", "PHEV"] = "All"
    make: str = "All"
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    query: str = ""


class MetaMakesResponse(BaseModel):
    makes: List[str]


class MetaYearsResponse(BaseModel):
    min: int
    max: int


class MetaHeadersResponse(BaseModel):
    headers: List[str]
    source: Optional[str] = None


class LoadResponse(BaseModel):
    status: str
    records: int
    headers: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)

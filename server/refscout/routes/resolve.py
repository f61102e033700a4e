from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from server.refscout.analysis.types import ParsedReference, TopicFilters
from server.refscout.pipeline.resolve import Resolver

router = APIRouter()


class ResolveRequest(BaseModel):
    doi: str | None = None
    pubmed_id: str | None = None
    arxiv_id: str | None = None
    title: str | None = None
    authors: list[str] = Field(default_factory=list)
    year: int | str | None = None
    providers: list[str] | None = None


class DiscoverRequest(BaseModel):
    topic: str
    limit: int | None = None
    filters: dict[str, Any] = Field(default_factory=dict)
    provider: str = "openalex"


def _resolver(request: Request) -> Resolver:
    return request.app.state.resolver


@router.post("/resolve")
def resolve(request: Request, body: ResolveRequest):
    ref = ParsedReference.from_dict(body.model_dump(exclude={"providers"}))
    try:
        candidates = _resolver(request).resolve(ref, providers=body.providers)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"candidates": [c.to_dict(include_raw=False) for c in candidates]}


@router.post("/discover")
def discover(request: Request, body: DiscoverRequest):
    try:
        candidates = _resolver(request).discover(
            body.topic,
            body.limit,
            TopicFilters.from_mapping(body.filters),
            provider=body.provider,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"candidates": [c.to_dict(include_raw=False) for c in candidates]}

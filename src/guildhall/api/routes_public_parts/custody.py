from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from guildhall.api.routes_public_parts.common import _address_param, _snapshot
from guildhall.runtime.apply import custody

router = APIRouter()

Json = Dict[str, Any]


@router.get("/custody/collections")
def collections(request: Request) -> Json:
    st = _snapshot(request)
    return {"ok": True, "count": custody.collection_count(st)}


@router.get("/custody/collections/{index}")
def collection_at(request: Request, index: int) -> Json:
    return {"ok": True, "index": index, "collection": custody.collection_at(_snapshot(request), index)}


@router.get("/custody/{collection}/tokens")
def tokens(request: Request, collection: str) -> Json:
    c = _address_param(collection, "collection")
    return {"ok": True, "collection": c, "count": custody.token_count(_snapshot(request), c)}


@router.get("/custody/{collection}/tokens/{index}")
def token_at(request: Request, collection: str, index: int) -> Json:
    c = _address_param(collection, "collection")
    return {"ok": True, "collection": c, "index": index, "token_id": custody.token_at(_snapshot(request), c, index)}


@router.get("/custody/{collection}/{token_id}/owner")
def owner(request: Request, collection: str, token_id: int) -> Json:
    c = _address_param(collection, "collection")
    return {"ok": True, "collection": c, "token_id": token_id, "owner": custody.owner_of(_snapshot(request), c, token_id)}

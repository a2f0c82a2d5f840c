from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from api.dependencies import get_indexer

router = APIRouter(prefix="/questions", tags=["search"])


@router.get("/search")
def search_questions(query: str = Query(..., min_length=1), limit: int = Query(10, ge=1, le=100)):
    if not query.strip():
        raise HTTPException(status_code=400, detail="Query is empty")
    return get_indexer().search(query, limit=limit)

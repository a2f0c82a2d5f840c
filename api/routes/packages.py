from __future__ import annotations

from fastapi import APIRouter, Body, HTTPException

from questions_hub.importing import TourType
from api.dependencies import get_renumbering_service

router = APIRouter(prefix="/packages", tags=["packages"])


@router.post("/{package_id}/renumber")
def renumber_package(package_id: int):
    if not get_renumbering_service().renumber_package(package_id):
        raise HTTPException(status_code=404, detail=f"Package not found: {package_id}")
    return {"status": "ok", "package_id": package_id}


@router.put("/{package_id}/tours/{tour_id}/type")
def set_tour_type(package_id: int, tour_id: int, tour_type: TourType = Body(..., embed=True, alias="type")):
    if not get_renumbering_service().set_tour_type_by_id(package_id, tour_id, tour_type):
        raise HTTPException(status_code=404, detail=f"Tour not found: {package_id}/{tour_id}")
    return {"status": "ok", "package_id": package_id, "tour_id": tour_id, "type": tour_type}

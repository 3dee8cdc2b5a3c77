from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response

import handlers
import schemas
from auth import protect, restrict_to
from database import object_id
from models import Review

router = APIRouter(prefix="/api/v1/reviews", tags=["reviews"], dependencies=[Depends(protect)])
# Mounted under /api/v1/tours/{tour_id}/reviews
nested_router = APIRouter(prefix="/{tour_id}/reviews", tags=["reviews"], dependencies=[Depends(protect)])


def set_tour_user_ids(payload: schemas.ReviewCreate, user: Dict[str, Any], tour_id: Optional[str] = None) -> Dict[str, Any]:
    data = payload.model_dump()
    if not data.get("tour"):
        data["tour"] = tour_id
    if not data.get("user"):
        data["user"] = str(user["_id"])
    return data


def list_reviews(request: Request, tour_id: Optional[str] = None):
    base_filter = {"tour": object_id(tour_id, "tour")} if tour_id else None
    return handlers.get_all(Review, request.query_params.multi_items(), base_filter)


@router.get("")
def get_all_reviews(request: Request):
    return list_reviews(request)


@nested_router.get("")
def get_tour_reviews(tour_id: str, request: Request):
    return list_reviews(request, tour_id)


@router.post("")
def create_review(payload: schemas.ReviewCreate, response: Response, user=Depends(restrict_to("user"))):
    return handlers.create_one(Review, set_tour_user_ids(payload, user), response)


@nested_router.post("")
def create_tour_review(tour_id: str, payload: schemas.ReviewCreate, response: Response, user=Depends(restrict_to("user"))):
    return handlers.create_one(Review, set_tour_user_ids(payload, user, tour_id), response)


@router.get("/{review_id}")
def get_review(review_id: str):
    return handlers.get_one(Review, review_id)


@router.patch("/{review_id}", dependencies=[Depends(restrict_to("user", "admin"))])
def update_review(review_id: str, payload: schemas.ReviewUpdate):
    return handlers.update_one(Review, review_id, payload)


@router.delete("/{review_id}", dependencies=[Depends(restrict_to("user", "admin"))])
def delete_review(review_id: str):
    return handlers.delete_one(Review, review_id)

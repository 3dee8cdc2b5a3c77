from datetime import datetime
from typing import Tuple

from fastapi import APIRouter, Depends, Request, Response

import handlers
import reviews
import schemas
from auth import restrict_to
from errors import AppError
from models import Tour

router = APIRouter(prefix="/api/v1/tours", tags=["tours"])
router.include_router(reviews.nested_router)

TOP_TOURS_QUERY = {
    "limit": "5",
    "sort": "-ratings_average,price",
    "fields": "name,price,ratings_average,summary,difficulty",
}
EARTH_RADIUS = {"mi": 3963.2, "km": 6378.1}
METERS_TO_UNIT = {"mi": 0.000621371, "km": 0.001}


def _parse_latlng(latlng: str) -> Tuple[float, float]:
    parts = latlng.split(",")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except (IndexError, ValueError):
        raise AppError("Please provide latitude and longitude in the format lat,lng.", 400)
    return lat, lng


def _check_unit(unit: str) -> str:
    if unit not in EARTH_RADIUS:
        raise AppError("Unit must be either 'mi' or 'km'.", 400)
    return unit


@router.get("/top-5-cheap")
def alias_top_tours(request: Request):
    params = [(k, v) for k, v in request.query_params.multi_items() if k not in TOP_TOURS_QUERY]
    params.extend(TOP_TOURS_QUERY.items())
    return handlers.get_all(Tour, params)


@router.get("/tour-stats")
def get_tour_stats():
    stats = Tour.aggregate([
        {"$match": {"ratings_average": {"$gte": 4.5}}},
        {
            "$group": {
                "_id": {"$toUpper": "$difficulty"},
                "num_tours": {"$sum": 1},
                "num_ratings": {"$sum": "$ratings_quantity"},
                "avg_rating": {"$avg": "$ratings_average"},
                "avg_price": {"$avg": "$price"},
                "min_price": {"$min": "$price"},
                "max_price": {"$max": "$price"},
            }
        },
        {"$sort": {"avg_price": 1}},
    ])
    return {"status": "success", "data": {"stats": stats}}


@router.get("/monthly-plan/{year}", dependencies=[Depends(restrict_to("admin", "lead-guide", "guide"))])
def get_monthly_plan(year: int):
    plan = Tour.aggregate([
        {"$unwind": "$start_dates"},
        {
            "$match": {
                "start_dates": {
                    "$gte": datetime(year, 1, 1),
                    "$lt": datetime(year + 1, 1, 1),
                }
            }
        },
        {
            "$group": {
                "_id": {"$month": "$start_dates"},
                "num_tour_starts": {"$sum": 1},
                "tours": {"$push": "$name"},
            }
        },
        {"$addFields": {"month": "$_id"}},
        {"$project": {"_id": 0}},
        {"$sort": {"num_tour_starts": -1}},
    ])
    return {"status": "success", "data": {"plan": plan}}


@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
def get_tours_within(distance: float, latlng: str, unit: str):
    lat, lng = _parse_latlng(latlng)
    radius = distance / EARTH_RADIUS[_check_unit(unit)]
    docs = Tour.query(
        {"start_location": {"$geoWithin": {"$centerSphere": [[lng, lat], radius]}}}
    ).exec()
    return {
        "status": "success",
        "results": len(docs),
        "data": {"data": [Tour.to_json(d) for d in docs]},
    }


@router.get("/distances/{latlng}/unit/{unit}")
def get_distances(latlng: str, unit: str):
    lat, lng = _parse_latlng(latlng)
    multiplier = METERS_TO_UNIT[_check_unit(unit)]
    distances = Tour.aggregate([
        {
            "$geoNear": {
                "near": {"type": "Point", "coordinates": [lng, lat]},
                "distanceField": "distance",
                "distanceMultiplier": multiplier,
            }
        },
        {"$project": {"distance": 1, "name": 1}},
    ])
    return {"status": "success", "data": {"data": [Tour.to_json(d) for d in distances]}}


@router.get("")
def get_all_tours(request: Request):
    return handlers.get_all(Tour, request.query_params.multi_items())


@router.post("", dependencies=[Depends(restrict_to("admin", "lead-guide"))])
def create_tour(payload: schemas.Tour, response: Response):
    return handlers.create_one(Tour, payload, response)


@router.get("/{tour_id}")
def get_tour(tour_id: str):
    return handlers.get_one(Tour, tour_id, populate=("reviews",))


@router.patch("/{tour_id}", dependencies=[Depends(restrict_to("admin", "lead-guide"))])
def update_tour(tour_id: str, payload: schemas.TourUpdate):
    return handlers.update_one(Tour, tour_id, payload)


@router.delete("/{tour_id}", dependencies=[Depends(restrict_to("admin", "lead-guide"))])
def delete_tour(tour_id: str):
    return handlers.delete_one(Tour, tour_id)

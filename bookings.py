from fastapi import APIRouter, Depends, Request, Response

import handlers
import payments
import schemas
from auth import protect, restrict_to
from models import Booking

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"], dependencies=[Depends(protect)])
admin_only = [Depends(restrict_to("admin", "lead-guide"))]


@router.get("/checkout-session/{tour_id}")
def get_checkout_session(tour_id: str, request: Request, user=Depends(protect)):
    session = payments.create_checkout_session(tour_id, user, request)
    return {"status": "success", "session": session}


@router.get("/my-bookings")
def get_my_bookings(request: Request, user=Depends(protect)):
    return handlers.get_all(Booking, request.query_params.multi_items(), {"user": user["_id"]})


@router.get("", dependencies=admin_only)
def get_all_bookings(request: Request):
    return handlers.get_all(Booking, request.query_params.multi_items())


@router.post("", dependencies=admin_only)
def create_booking(payload: schemas.Booking, response: Response):
    return handlers.create_one(Booking, payload, response)


@router.get("/{booking_id}", dependencies=admin_only)
def get_booking(booking_id: str):
    return handlers.get_one(Booking, booking_id)


@router.patch("/{booking_id}", dependencies=admin_only)
def update_booking(booking_id: str, payload: schemas.BookingUpdate):
    return handlers.update_one(Booking, booking_id, payload)


@router.delete("/{booking_id}", dependencies=admin_only)
def delete_booking(booking_id: str):
    return handlers.delete_one(Booking, booking_id)

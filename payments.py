"""
Stripe checkout and webhook reconciliation.

A checkout session is created for a single tour; once Stripe reports the
session as completed the webhook turns it into a booking. Replays of the same
event are recognised by the checkout session id and do not create a second
booking.
"""

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import Request
from pymongo.errors import DuplicateKeyError

import config
from errors import AppError
from models import Booking, Tour, User

logger = logging.getLogger(__name__)

stripe.api_key = config.STRIPE_SECRET_KEY

COMPLETED_EVENT = "checkout.session.completed"


def _field(obj: Any, key: str) -> Any:
    # Works for both plain dicts and StripeObject
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def create_checkout_session(tour_id: str, user: Dict[str, Any], request: Request) -> Dict[str, Any]:
    tour = Tour.find_by_id(tour_id)
    if tour is None:
        raise AppError("No tour found with that ID", 404)
    base_url = str(request.base_url).rstrip("/")
    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        mode="payment",
        invoice_creation={"enabled": True},
        success_url=f"{base_url}/my-tours?alert=booking",
        cancel_url=f"{base_url}/tour/{tour.get('slug', '')}",
        customer_email=user["email"],
        client_reference_id=str(tour["_id"]),
        line_items=[
            {
                "price_data": {
                    "currency": "usd",
                    "unit_amount": int(round(tour["price"] * 100)),
                    "product_data": {
                        "name": f"{tour['name']} Tour",
                        "description": tour.get("summary") or tour["name"],
                        "images": [f"{base_url}/img/tours/{tour.get('image_cover', '')}"],
                    },
                },
                "quantity": 1,
            }
        ],
    )
    return {"id": _field(session, "id"), "url": _field(session, "url")}


def construct_event(payload: bytes, signature: Optional[str]):
    """Verify the Stripe signature; raises stripe.SignatureVerificationError or ValueError."""
    if not signature:
        raise ValueError("missing Stripe-Signature header")
    return stripe.Webhook.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET)


def create_booking_checkout(session: Any) -> Optional[Dict[str, Any]]:
    """Persist the booking for a completed session; None when it already exists."""
    session_id = _field(session, "id")
    if session_id and Booking.collection().find_one({"checkout_session_id": session_id}):
        logger.info("Checkout session %s already booked; skipping replay", session_id)
        return None
    email = _field(session, "customer_email") or _field(_field(session, "customer_details"), "email")
    user = User.find_one({"email": (email or "").lower()})
    if user is None:
        raise LookupError(f"No user found for checkout email {email!r}")
    try:
        booking = Booking.create({
            "tour": _field(session, "client_reference_id"),
            "user": str(user["_id"]),
            "price": _field(session, "amount_total") / 100,
            "checkout_session_id": session_id,
        })
    except DuplicateKeyError:
        logger.info("Checkout session %s booked by a concurrent delivery; skipping", session_id)
        return None
    logger.info("Booking %s created from checkout session %s", booking["_id"], session_id)
    return booking


def handle_event(event: Any) -> None:
    if _field(event, "type") == COMPLETED_EVENT:
        create_booking_checkout(_field(_field(event, "data"), "object"))
    else:
        logger.debug("Ignoring Stripe event %s", _field(event, "type"))

import logging
from contextlib import asynccontextmanager
from typing import Optional

import stripe
from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import bookings
import config
import database
import payments
import reviews
import tours
import users
from auth import current_user_optional
from errors import register_error_handlers
from security import BodySizeLimitMiddleware, RateLimitMiddleware, SecurityHeadersMiddleware

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook-checkout"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    yield


app = FastAPI(title="Natours API", version="1.0.0", lifespan=lifespan)

# Added last runs first: CORS wraps everything, then headers, rate limit, body cap.
app.add_middleware(BodySizeLimitMiddleware, max_bytes=config.BODY_LIMIT_BYTES, exempt_paths=(WEBHOOK_PATH,))
app.add_middleware(
    RateLimitMiddleware,
    max_requests=config.RATE_LIMIT_MAX,
    window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(tours.router)
app.include_router(users.router)
app.include_router(reviews.router)
app.include_router(bookings.router)


@app.get("/")
def read_root(request: Request):
    user = current_user_optional(request)
    return {"message": "Natours API Ready", "user": user["name"] if user else None}


@app.post(WEBHOOK_PATH)
async def webhook_checkout(request: Request, stripe_signature: Optional[str] = Header(None)):
    payload = await request.body()
    try:
        event = payments.construct_event(payload, stripe_signature)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("Rejected webhook: %s", e)
        return PlainTextResponse(f"Webhook error: {e}", status_code=400)

    try:
        payments.handle_event(event)
    except Exception:
        logger.exception("Webhook handler failed")
        return JSONResponse(
            status_code=500,
            content={"error": "Webhook handler failed. Please try again later."},
        )
    return {"received": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

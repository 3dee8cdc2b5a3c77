import os

from dotenv import load_dotenv

load_dotenv()

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "natours-dev-secret-change-me")
JWT_EXPIRES_IN_DAYS = int(os.getenv("JWT_EXPIRES_IN_DAYS", "90"))
JWT_COOKIE_EXPIRES_IN_DAYS = int(os.getenv("JWT_COOKIE_EXPIRES_IN_DAYS", "90"))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "100"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "3600"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
BODY_LIMIT_BYTES = int(os.getenv("BODY_LIMIT_BYTES", "10240"))

PORT = int(os.getenv("PORT", "8000"))


def is_production() -> bool:
    return APP_ENV == "production"

import logging

from fastapi import APIRouter, Depends, Request, Response

import handlers
import schemas
from auth import COOKIE_NAME, create_send_token, protect, restrict_to
from errors import AppError
from models import User
from security import sanitize_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])
admin_only = [Depends(restrict_to("admin"))]

UPDATE_ME_FIELDS = ("name", "email", "photo")


# Auth

@router.post("/signup")
def signup(payload: schemas.User, request: Request, response: Response):
    if User.collection().find_one({"email": payload.email}):
        raise AppError("Email already exists. Please use a different email.", 400)
    data = payload.model_dump()
    data["name"] = sanitize_payload(data["name"])
    user = User.create(data)
    return create_send_token(user, 201, request, response)


@router.post("/login")
def login(payload: schemas.LoginRequest, request: Request, response: Response):
    if not payload.email or not payload.password:
        raise AppError("Please provide email and password!", 400)
    user = User.find_one({"email": payload.email.lower()}, include=("password",))
    if user is None or not User.correct_password(payload.password, user.get("password")):
        raise AppError("Incorrect email or password", 401)
    return create_send_token(user, 200, request, response)


@router.get("/logout")
def logout(response: Response):
    response.set_cookie(COOKIE_NAME, "loggedout", max_age=10, httponly=True)
    return {"status": "success"}


@router.post("/forgotPassword")
def forgot_password(payload: schemas.ForgotPasswordRequest, request: Request):
    user = User.find_one({"email": payload.email.lower()})
    if user is None:
        raise AppError("There is no user with that email address.", 404)
    reset_token = User.create_password_reset_token(user["_id"])
    reset_url = f"{str(request.base_url).rstrip('/')}/api/v1/users/resetPassword/{reset_token}"
    logger.info("Password reset requested for %s: %s", user["email"], reset_url)
    return {"status": "success", "message": "Token sent to email!"}


@router.patch("/resetPassword/{token}")
def reset_password(token: str, payload: schemas.ResetPasswordRequest, request: Request, response: Response):
    user = User.find_by_reset_token(token)
    if user is None:
        raise AppError("Token is invalid or has expired", 400)
    user = User.set_password(user["_id"], payload.password)
    return create_send_token(user, 200, request, response)


@router.patch("/updateMyPassword")
def update_password(
    payload: schemas.UpdatePasswordRequest,
    request: Request,
    response: Response,
    user=Depends(protect),
):
    current = User.find_by_id(user["_id"], include=("password",))
    if not User.correct_password(payload.password_current, current.get("password")):
        raise AppError("Your current password is wrong.", 401)
    updated = User.set_password(user["_id"], payload.password)
    return create_send_token(updated, 200, request, response)


# Current user

@router.get("/me")
def get_me(user=Depends(protect)):
    return handlers.get_one(User, str(user["_id"]))


@router.patch("/updateMe")
def update_me(payload: schemas.UpdateMe, user=Depends(protect)):
    extra = payload.model_extra or {}
    if "password" in extra or "password_confirm" in extra:
        raise AppError("This route is not for password updates. Please use /updateMyPassword.", 400)
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if k in UPDATE_ME_FIELDS}
    updated = User.update_by_id(user["_id"], sanitize_payload(changes))
    return {"status": "success", "data": {"user": User.to_json(updated)}}


@router.delete("/deleteMe")
def delete_me(user=Depends(protect)):
    User.deactivate(user["_id"])
    return Response(status_code=204)


# Administration

@router.get("", dependencies=admin_only)
def get_all_users(request: Request):
    return handlers.get_all(User, request.query_params.multi_items())


@router.post("", dependencies=admin_only)
def create_user():
    raise AppError("This route is not defined! Please use /signup instead", 500)


@router.get("/{user_id}", dependencies=admin_only)
def get_user(user_id: str):
    return handlers.get_one(User, user_id)


@router.patch("/{user_id}", dependencies=admin_only)
def update_user(user_id: str, payload: schemas.UserUpdate):
    return handlers.update_one(User, user_id, payload)


@router.delete("/{user_id}", dependencies=admin_only)
def delete_user(user_id: str):
    return handlers.delete_one(User, user_id)

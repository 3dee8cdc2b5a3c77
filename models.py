"""
Model layer

Thin document models over pymongo. Each model knows its collection, which
documents are visible by default, which fields are hidden unless asked for,
how references are populated, and the lifecycle hooks that run around writes.
Documents stay plain dicts, as pymongo returns them.
"""

import hashlib
import logging
import re
import secrets
import unicodedata
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import bcrypt
from bson import ObjectId
from pydantic import BaseModel
from pymongo import ReturnDocument

import config
import database
import schemas
from database import as_utc, object_id, utcnow
from errors import AppError

logger = logging.getLogger(__name__)

VERSION_KEY = "__v"


def slugify(value: str) -> str:
    condensed = " ".join(str(value).split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", condensed)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")


def merge_filters(*filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    parts = [f for f in filters if f]
    if not parts:
        return {}
    if len(parts) == 1:
        return dict(parts[0])
    return {"$and": parts}


def serialize(value: Any) -> Any:
    """Make a document JSON-ready: ObjectIds to str, datetimes to ISO, _id to id."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize(v)
            else:
                out[k] = serialize(v)
        return out
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


class Query:
    """A pending find: filter, projection, sort and paging are applied on exec()."""

    def __init__(self, model: Type["Model"], filter_dict: Optional[Dict[str, Any]] = None):
        self.model = model
        self.filter: Dict[str, Any] = dict(filter_dict or {})
        self.projection: Optional[Dict[str, int]] = None
        self.sort_spec: List[Tuple[str, int]] = []
        self.skip_count = 0
        self.limit_count = 0
        self.populate_paths: List[str] = list(model.auto_populate)

    def find(self, filter_dict: Dict[str, Any]) -> "Query":
        self.filter = merge_filters(self.filter, filter_dict)
        return self

    def sort(self, spec: Sequence[Tuple[str, int]]) -> "Query":
        self.sort_spec = list(spec)
        return self

    def select(self, projection: Optional[Dict[str, int]]) -> "Query":
        self.projection = projection
        return self

    def skip(self, count: int) -> "Query":
        self.skip_count = count
        return self

    def limit(self, count: int) -> "Query":
        self.limit_count = count
        return self

    def populate(self, path: str) -> "Query":
        if path not in self.populate_paths:
            self.populate_paths.append(path)
        return self

    def exec(self) -> List[Dict[str, Any]]:
        cursor = self.model.collection().find(
            self.model.scoped(self.filter), self.model.projection(self.projection)
        )
        if self.sort_spec:
            cursor = cursor.sort(self.sort_spec)
        if self.skip_count:
            cursor = cursor.skip(self.skip_count)
        if self.limit_count:
            cursor = cursor.limit(self.limit_count)
        return self.model.populate(list(cursor), self.populate_paths)


class Model:
    collection_name: str = ""
    schema: Type[BaseModel] = BaseModel
    update_schema: Type[BaseModel] = BaseModel
    default_filter: Dict[str, Any] = {}
    hidden_fields: Tuple[str, ...] = ()
    reference_fields: Tuple[str, ...] = ()
    auto_populate: Tuple[str, ...] = ()

    @classmethod
    def collection(cls):
        return database.collection(cls.collection_name)

    @classmethod
    def scoped(cls, filter_dict: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return merge_filters(cls.default_filter, filter_dict)

    @classmethod
    def projection(cls, requested: Optional[Dict[str, int]] = None, include: Iterable[str] = ()) -> Optional[Dict[str, int]]:
        hidden = [f for f in cls.hidden_fields if f not in set(include)]
        if requested and any(requested.values()):
            projection = {k: v for k, v in requested.items() if k not in hidden}
            if any(projection.values()):
                return projection
            # only hidden fields were asked for
            requested = None
        projection = dict(requested or {})
        for field in hidden:
            projection[field] = 0
        return projection or None

    @classmethod
    def query(cls, filter_dict: Optional[Dict[str, Any]] = None) -> Query:
        return Query(cls, filter_dict)

    @classmethod
    def find_one(cls, filter_dict: Dict[str, Any], include: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
        return cls.collection().find_one(
            cls.scoped(filter_dict), cls.projection({VERSION_KEY: 0}, include)
        )

    @classmethod
    def find_by_id(cls, doc_id: Any, include: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
        return cls.find_one({"_id": object_id(doc_id)}, include)

    @classmethod
    def aggregate(cls, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return list(cls.collection().aggregate(pipeline))

    @classmethod
    def cast_refs(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        for field in cls.reference_fields:
            value = data.get(field)
            if isinstance(value, list):
                data[field] = [object_id(v, field) for v in value]
            elif value is not None:
                data[field] = object_id(value, field)
        return data

    # Lifecycle hooks

    @classmethod
    def before_create(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    @classmethod
    def before_update(cls, existing: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        return changes

    @classmethod
    def after_save(cls, doc: Dict[str, Any]) -> None:
        pass

    @classmethod
    def after_delete(cls, doc: Dict[str, Any]) -> None:
        pass

    @classmethod
    def populate(cls, docs: List[Dict[str, Any]], paths: Iterable[str]) -> List[Dict[str, Any]]:
        return docs

    @classmethod
    def add_virtuals(cls, doc: Dict[str, Any]) -> Dict[str, Any]:
        return doc

    @classmethod
    def to_json(cls, doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        doc = {k: v for k, v in doc.items() if k not in cls.hidden_fields}
        return serialize(cls.add_virtuals(doc))

    # Writes

    @classmethod
    def create(cls, data: Any, validate: bool = True) -> Dict[str, Any]:
        if validate:
            data = cls.schema.model_validate(data).model_dump(exclude_none=True)
        elif isinstance(data, BaseModel):
            data = data.model_dump(exclude_none=True)
        doc = cls.cast_refs(cls.before_create(dict(data)))
        inserted_id = database.create_document(cls.collection_name, doc)
        saved = cls.collection().find_one({"_id": ObjectId(inserted_id)}, cls.projection({VERSION_KEY: 0}))
        cls.after_save(saved)
        return saved

    @classmethod
    def update_by_id(cls, doc_id: Any, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = object_id(doc_id)
        existing = cls.collection().find_one(cls.scoped({"_id": oid}))
        if existing is None:
            return None
        changes = cls.cast_refs(cls.before_update(existing, dict(changes)))
        changes["updated_at"] = utcnow()
        updated = cls.collection().find_one_and_update(
            {"_id": oid},
            {"$set": changes},
            projection=cls.projection({VERSION_KEY: 0}),
            return_document=ReturnDocument.AFTER,
        )
        cls.after_save(updated)
        return updated

    @classmethod
    def delete_by_id(cls, doc_id: Any) -> Optional[Dict[str, Any]]:
        doc = cls.collection().find_one_and_delete(cls.scoped({"_id": object_id(doc_id)}))
        if doc is not None:
            cls.after_delete(doc)
        return doc


class User(Model):
    collection_name = "user"
    schema = schemas.User
    update_schema = schemas.UserUpdate
    default_filter = {"active": {"$ne": False}}
    hidden_fields = (
        "password",
        "password_changed_at",
        "password_reset_token",
        "password_reset_expires",
        "active",
    )

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def correct_password(candidate: str, hashed: str) -> bool:
        if not candidate or not hashed:
            return False
        return bcrypt.checkpw(candidate.encode("utf-8"), hashed.encode("utf-8"))

    @staticmethod
    def changed_password_after(user: Dict[str, Any], jwt_timestamp: int) -> bool:
        changed_at = as_utc(user.get("password_changed_at"))
        if changed_at is None:
            return False
        return jwt_timestamp < int(changed_at.timestamp())

    @classmethod
    def before_create(cls, data):
        data.pop("password_confirm", None)
        if data.get("password"):
            data["password"] = cls.hash_password(data["password"])
        if data.get("email"):
            data["email"] = data["email"].lower()
        data.setdefault("photo", "default.jpg")
        data.setdefault("role", "user")
        data.setdefault("active", True)
        return data

    @classmethod
    def set_password(cls, user_id: Any, password: str) -> Optional[Dict[str, Any]]:
        # Back-dated by a second so a token signed right after still validates.
        return cls.collection().find_one_and_update(
            {"_id": object_id(user_id)},
            {
                "$set": {
                    "password": cls.hash_password(password),
                    "password_changed_at": utcnow() - timedelta(seconds=1),
                    "updated_at": utcnow(),
                },
                "$unset": {"password_reset_token": "", "password_reset_expires": ""},
            },
            projection=cls.projection({VERSION_KEY: 0}),
            return_document=ReturnDocument.AFTER,
        )

    @staticmethod
    def hash_reset_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @classmethod
    def create_password_reset_token(cls, user_id: Any) -> str:
        reset_token = secrets.token_hex(32)
        cls.collection().update_one(
            {"_id": object_id(user_id)},
            {
                "$set": {
                    "password_reset_token": cls.hash_reset_token(reset_token),
                    "password_reset_expires": utcnow() + timedelta(minutes=10),
                }
            },
        )
        return reset_token

    @classmethod
    def find_by_reset_token(cls, token: str) -> Optional[Dict[str, Any]]:
        user = cls.find_one(
            {"password_reset_token": cls.hash_reset_token(token)},
            include=("password_reset_expires",),
        )
        if user is None:
            return None
        expires = as_utc(user.get("password_reset_expires"))
        if expires is None or expires <= utcnow():
            return None
        return user

    @classmethod
    def deactivate(cls, user_id: Any) -> None:
        cls.collection().update_one({"_id": object_id(user_id)}, {"$set": {"active": False}})


class Tour(Model):
    collection_name = "tour"
    schema = schemas.Tour
    update_schema = schemas.TourUpdate
    default_filter = {"secret_tour": {"$ne": True}}
    reference_fields = ("guides",)
    auto_populate = ("guides",)

    @classmethod
    def before_create(cls, data):
        data["slug"] = slugify(data["name"])
        return data

    @classmethod
    def before_update(cls, existing, changes):
        if changes.get("name"):
            changes["slug"] = slugify(changes["name"])
        if "price_discount" in changes or "price" in changes:
            price = changes.get("price", existing.get("price"))
            discount = changes.get("price_discount", existing.get("price_discount"))
            if discount is not None and price is not None and discount >= price:
                raise AppError(
                    f"Invalid input data. The discount ({discount}) must be less than the price", 400
                )
        return changes

    @classmethod
    def add_virtuals(cls, doc):
        if doc.get("duration") is not None:
            doc["duration_weeks"] = doc["duration"] / 7
        return doc

    @classmethod
    def aggregate(cls, pipeline):
        pipeline = list(pipeline)
        position = 1 if pipeline and "$geoNear" in pipeline[0] else 0
        pipeline.insert(position, {"$match": cls.scoped()})
        return super().aggregate(pipeline)

    @classmethod
    def populate(cls, docs, paths):
        paths = set(paths)
        if "guides" in paths:
            guide_ids = {g for d in docs for g in d.get("guides", [])}
            guides = {}
            if guide_ids:
                guides = {
                    u["_id"]: u
                    for u in User.query({"_id": {"$in": list(guide_ids)}}).select({VERSION_KEY: 0}).exec()
                }
            for d in docs:
                if "guides" in d:
                    d["guides"] = [guides[g] for g in d["guides"] if g in guides]
        if "reviews" in paths:
            for d in docs:
                d["reviews"] = Review.query({"tour": d["_id"]}).select({VERSION_KEY: 0}).exec()
        return docs


class Review(Model):
    collection_name = "review"
    schema = schemas.Review
    update_schema = schemas.ReviewUpdate
    reference_fields = ("tour", "user")
    auto_populate = ("user",)

    @classmethod
    def populate(cls, docs, paths):
        if "user" in set(paths):
            user_ids = list({d["user"] for d in docs if d.get("user")})
            users = {}
            if user_ids:
                users = {
                    u["_id"]: {"_id": u["_id"], "name": u.get("name"), "photo": u.get("photo")}
                    for u in User.query({"_id": {"$in": user_ids}}).exec()
                }
            for d in docs:
                if d.get("user") in users:
                    d["user"] = users[d["user"]]
        return docs

    @classmethod
    def calc_average_ratings(cls, tour_id: ObjectId) -> None:
        stats = cls.aggregate([
            {"$match": {"tour": tour_id}},
            {"$group": {"_id": "$tour", "n_rating": {"$sum": 1}, "avg_rating": {"$avg": "$rating"}}},
        ])
        if stats and stats[0]["avg_rating"] is not None:
            values = {
                "ratings_quantity": stats[0]["n_rating"],
                "ratings_average": round(stats[0]["avg_rating"], 1),
            }
        else:
            values = {"ratings_quantity": 0, "ratings_average": 4.5}
        Tour.collection().update_one({"_id": tour_id}, {"$set": values})

    @classmethod
    def after_save(cls, doc):
        if doc and doc.get("tour"):
            cls.calc_average_ratings(doc["tour"])

    @classmethod
    def after_delete(cls, doc):
        if doc.get("tour"):
            cls.calc_average_ratings(doc["tour"])


class Booking(Model):
    collection_name = "booking"
    schema = schemas.Booking
    update_schema = schemas.BookingUpdate
    reference_fields = ("tour", "user")
    auto_populate = ("tour", "user")

    @classmethod
    def populate(cls, docs, paths):
        paths = set(paths)
        if "user" in paths:
            ids = list({d["user"] for d in docs if d.get("user")})
            users = {u["_id"]: u for u in User.query({"_id": {"$in": ids}}).select({VERSION_KEY: 0}).exec()} if ids else {}
            for d in docs:
                if d.get("user") in users:
                    d["user"] = users[d["user"]]
        if "tour" in paths:
            ids = list({d["tour"] for d in docs if d.get("tour")})
            tours = {}
            if ids:
                # secret tours can still be booked, so read them without the default filter
                for t in Tour.collection().find({"_id": {"$in": ids}}, {"name": 1}):
                    tours[t["_id"]] = t
            for d in docs:
                if d.get("tour") in tours:
                    d["tour"] = tours[d["tour"]]
        return docs

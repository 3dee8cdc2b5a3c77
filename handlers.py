"""
Generic resource handlers

Each factory takes a model and returns the body of a standard CRUD response,
so the routers only have to declare paths, guards and request models.
"""

from typing import Any, Dict, Iterable, Optional, Tuple, Type

from fastapi import Response
from pydantic import BaseModel

from api_features import APIFeatures
from errors import AppError
from models import Model
from security import sanitize_payload


def get_all(
    model: Type[Model],
    query_items: Iterable[Tuple[str, str]],
    base_filter: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    features = (
        APIFeatures(model.query(base_filter), query_items)
        .filter()
        .sort()
        .limit_fields()
        .paginate()
    )
    docs = features.query.exec()
    return {
        "status": "success",
        "results": len(docs),
        "data": {"data": [model.to_json(d) for d in docs]},
    }


def get_one(model: Type[Model], doc_id: str, populate: Iterable[str] = ()) -> Dict[str, Any]:
    doc = model.find_by_id(doc_id)
    if doc is None:
        raise AppError("No document found with that ID", 404)
    paths = list(model.auto_populate) + [p for p in populate if p not in model.auto_populate]
    doc = model.populate([doc], paths)[0]
    return {"status": "success", "data": {"data": model.to_json(doc)}}


def _payload(data: Any, **kwargs) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(**kwargs)
    return sanitize_payload(data)


def create_one(model: Type[Model], data: Any, response: Response) -> Dict[str, Any]:
    doc = model.create(_payload(data, exclude_none=True))
    response.status_code = 201
    return {"status": "success", "data": {"data": model.to_json(doc)}}


def update_one(model: Type[Model], doc_id: str, data: Any) -> Dict[str, Any]:
    changes = _payload(data, exclude_unset=True)
    validated = model.update_schema.model_validate(changes)
    changes = validated.model_dump(include=validated.model_fields_set)
    doc = model.update_by_id(doc_id, changes)
    if doc is None:
        raise AppError("No document found with that ID", 404)
    return {"status": "success", "data": {"data": model.to_json(doc)}}


def delete_one(model: Type[Model], doc_id: str) -> Response:
    doc = model.delete_by_id(doc_id)
    if doc is None:
        raise AppError("No document found with that ID", 404)
    return Response(status_code=204)

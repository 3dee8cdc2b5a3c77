import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import Query

EXCLUDED_FIELDS = ("page", "sort", "limit", "fields")
COMPARISON_OPERATORS = ("gte", "gt", "lte", "lt")
# Fields that may be repeated in the query string (?difficulty=easy&difficulty=medium).
REPEATABLE_FIELDS = (
    "duration",
    "ratings_quantity",
    "ratings_average",
    "max_group_size",
    "difficulty",
    "price",
)

_BRACKET_KEY = re.compile(r"^([^\[\]]+)\[([^\[\]]+)\]$")


def coerce_value(value: str) -> Any:
    """Query-string values arrive as text; cast the obvious scalars."""
    if re.fullmatch(r"-?\d+", value):
        return int(value)
    if re.fullmatch(r"-?\d*\.\d+", value):
        return float(value)
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def _is_unsafe_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def parse_query_string(items: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Collapse a multi-valued query string into a nested dict.

    Repeated keys keep their last value unless the field is repeatable, in
    which case the values are gathered into a list.
    """
    grouped: Dict[Tuple[str, Optional[str]], List[str]] = {}
    for key, value in items:
        match = _BRACKET_KEY.match(key)
        field, op = (match.group(1), match.group(2)) if match else (key, None)
        if _is_unsafe_key(field) or (op is not None and _is_unsafe_key(op)):
            continue
        grouped.setdefault((field, op), []).append(value)

    parsed: Dict[str, Any] = {}
    for (field, op), values in grouped.items():
        if len(values) > 1 and field in REPEATABLE_FIELDS and op is None:
            value: Any = values
        else:
            value = values[-1]
        if op is None:
            parsed[field] = value
        else:
            nested = parsed.get(field)
            if not isinstance(nested, dict):
                nested = {}
            nested[op] = value
            parsed[field] = nested
    return parsed


class APIFeatures:
    """Layers filter, sort, field selection and pagination onto a pending query.

    Usage mirrors a fluent query builder::

        features = APIFeatures(Tour.query(), request.query_params.multi_items())
        docs = features.filter().sort().limit_fields().paginate().query.exec()
    """

    def __init__(self, query: Query, query_string: Iterable[Tuple[str, str]]):
        self.query = query
        self.query_string = parse_query_string(query_string)

    def filter(self) -> "APIFeatures":
        query_obj = {k: v for k, v in self.query_string.items() if k not in EXCLUDED_FIELDS}
        conditions: Dict[str, Any] = {}
        for field, value in query_obj.items():
            if isinstance(value, dict):
                conditions[field] = {
                    (f"${op}" if op in COMPARISON_OPERATORS else op): self._coerce(v)
                    for op, v in value.items()
                }
            elif isinstance(value, list):
                conditions[field] = {"$in": [coerce_value(v) for v in value]}
            else:
                conditions[field] = coerce_value(value)
        if conditions:
            self.query = self.query.find(conditions)
        return self

    @staticmethod
    def _coerce(value: Any) -> Any:
        return coerce_value(value) if isinstance(value, str) else value

    def sort(self) -> "APIFeatures":
        sort_by = self.query_string.get("sort")
        spec = []
        if isinstance(sort_by, str):
            for part in sort_by.split(","):
                part = part.strip()
                name = part.lstrip("-")
                if not name:
                    continue
                spec.append((name, -1 if part.startswith("-") else 1))
        if spec:
            self.query = self.query.sort(spec)
        else:
            self.query = self.query.sort([("created_at", -1)])
        return self

    def limit_fields(self) -> "APIFeatures":
        fields = self.query_string.get("fields")
        names = []
        if isinstance(fields, str):
            names = [f.strip() for f in fields.split(",") if f.strip().lstrip("-")]
        if names:
            if all(n.startswith("-") for n in names):
                projection = {n[1:]: 0 for n in names}
            else:
                projection = {n: 1 for n in names if not n.startswith("-")}
            self.query = self.query.select(projection)
        else:
            self.query = self.query.select({"__v": 0})
        return self

    def paginate(self) -> "APIFeatures":
        page = self._positive_int(self.query_string.get("page")) or 1
        limit = self._positive_int(self.query_string.get("limit"))
        if limit:
            self.query = self.query.skip((page - 1) * limit).limit(limit)
        return self

    @staticmethod
    def _positive_int(value: Any) -> Optional[int]:
        if not isinstance(value, str):
            return None
        try:
            number = int(value)
        except ValueError:
            return None
        return number if number > 0 else None

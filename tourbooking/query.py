"""
Generic query builder.

Turns the query string of a list request into a filtered, sorted, field-limited
and paginated SQLAlchemy query, for any model::

    features = QueryFeatures(db.query(models.Tour), models.Tour, request.query_params)
    features.filter().sort().limit_fields().paginate()
    tours = features.query.all()

Nothing is executed here; the caller runs ``features.query``.
"""
import operator
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from pydantic.alias_generators import to_camel, to_snake
from sqlalchemy import inspect

from .errors import BadRequest

RESERVED_KEYS = ("page", "sort", "limit", "fields")
COMPARISON_OPERATORS = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
}
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100
# largest value a 64-bit SQL integer column can hold
MAX_SQL_INT = 2**63 - 1
HIDDEN_FIELDS = ("version",)
# never filterable, sortable or projectable
PRIVATE_FIELDS = ("hashed_password", "password_reset_code", "password_reset_expires")

_KEY_PATTERN = re.compile(r"^(?P<field>[A-Za-z_][A-Za-z0-9_]*)(?:\[(?P<op>[A-Za-z]*)\])?$")


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Flatten a (multi-)mapping: single values stay strings, repeats become lists."""
    if not params:
        return {}
    items = params.multi_items() if hasattr(params, "multi_items") else params.items()

    grouped: dict[str, list] = {}
    for key, value in items:
        if isinstance(value, (list, tuple)):
            grouped.setdefault(key, []).extend(value)
        else:
            grouped.setdefault(key, []).append(value)
    return {key: values[0] if len(values) == 1 else values for key, values in grouped.items()}


def parse_filter(params: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    """
    Build the predicate description of a query string.

    ``price[gte]=100&price[lte]=500&difficulty=easy`` gives
    ``{"price": {"gte": "100", "lte": "500"}, "difficulty": {"eq": "easy"}}``.
    Operators other than gte/gt/lte/lt fall back to equality.
    """
    predicates: dict[str, dict[str, Any]] = {}
    for key, value in normalize_params(params).items():
        if key in RESERVED_KEYS:
            continue
        match = _KEY_PATTERN.match(key)
        if match is None:
            raise BadRequest(f"Invalid filter parameter: {key}.")
        op = match["op"] if match["op"] in COMPARISON_OPERATORS else "eq"
        predicates.setdefault(match["field"], {})[op] = value
    return predicates


def resolve_column(model, name: str):
    """Map an API field name (camelCase or snake_case) to a mapped column."""
    key = to_snake(name)
    columns = inspect(model).columns
    if key in PRIVATE_FIELDS or key not in columns.keys():
        raise BadRequest(f"Invalid field: {name}.")
    return getattr(model, key)


def coerce_value(column, field: str, raw):
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        raise BadRequest(f"Cannot query on field: {field}.")

    try:
        if python_type is bool:
            lowered = str(raw).lower()
            if lowered in ("true", "1"):
                return True
            if lowered in ("false", "0"):
                return False
            raise ValueError(raw)
        if python_type is datetime:
            return datetime.fromisoformat(raw)
        if python_type is date:
            return date.fromisoformat(raw)
        value = python_type(raw)
    except (TypeError, ValueError):
        raise BadRequest(f"Invalid {field}: {raw}.")
    if python_type is int and not -MAX_SQL_INT - 1 <= value <= MAX_SQL_INT:
        raise BadRequest(f"Invalid {field}: {raw}.")
    return value


def build_criteria(model, predicates: dict[str, dict[str, Any]]) -> list:
    criteria = []
    for field, ops in predicates.items():
        column = resolve_column(model, field)
        for op, raw in ops.items():
            if op == "eq":
                if isinstance(raw, list):
                    criteria.append(column.in_([coerce_value(column, field, v) for v in raw]))
                else:
                    criteria.append(column == coerce_value(column, field, raw))
                continue
            if isinstance(raw, list):
                raise BadRequest(f"Invalid {field}[{op}]: expected a single value.")
            criteria.append(COMPARISON_OPERATORS[op](column, coerce_value(column, field, raw)))
    return criteria


def split_list(value) -> list[str]:
    if isinstance(value, list):
        value = ",".join(value)
    return [part.strip() for part in str(value).split(",") if part.strip()]


def parse_positive_int(value, default: int) -> int:
    # zero, negative, oversized and non-numeric values all fall back to the default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if 0 < number <= MAX_SQL_INT else default


@dataclass(frozen=True)
class Projection:
    """Field limiting applied to serialized (camelCase) documents."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = HIDDEN_FIELDS

    @classmethod
    def parse(cls, value) -> "Projection":
        fields = split_list(value)
        if not fields:
            return cls()
        excluded = [f[1:] for f in fields if f.startswith("-")]
        included = [f for f in fields if not f.startswith("-")]
        if excluded and included:
            raise BadRequest("Cannot mix field inclusion and exclusion.")
        if excluded:
            return cls(exclude=tuple(to_camel(to_snake(f)) for f in excluded))
        names = ["id"] + [to_camel(to_snake(f)) for f in included]
        return cls(include=tuple(dict.fromkeys(names)), exclude=())

    def apply(self, document: dict) -> dict:
        if self.include:
            return {key: value for key, value in document.items() if key in self.include}
        return {key: value for key, value in document.items() if key not in self.exclude}


class QueryFeatures:
    def __init__(self, query, model, params: Mapping[str, Any] | None):
        self.query = query
        self.model = model
        self.params = normalize_params(params)
        self.projection = Projection()
        self.page = DEFAULT_PAGE
        self.limit = DEFAULT_LIMIT

    def filter(self) -> "QueryFeatures":
        criteria = build_criteria(self.model, parse_filter(self.params))
        if criteria:
            self.query = self.query.filter(*criteria)
        return self

    def sort(self) -> "QueryFeatures":
        fields = split_list(self.params.get("sort", ""))
        if not fields:
            fields = ["-createdAt"] if "created_at" in inspect(self.model).columns.keys() else []

        order_by = []
        for field in fields:
            descending = field.startswith("-")
            column = resolve_column(self.model, field.lstrip("-"))
            order_by.append(column.desc() if descending else column.asc())
        # stable pages when the requested keys tie
        order_by.append(self.model.id.desc() if not self.params.get("sort") else self.model.id.asc())

        self.query = self.query.order_by(*order_by)
        return self

    def limit_fields(self) -> "QueryFeatures":
        self.projection = Projection.parse(self.params.get("fields", ""))
        return self

    def paginate(self) -> "QueryFeatures":
        self.page = parse_positive_int(self.params.get("page"), DEFAULT_PAGE)
        self.limit = parse_positive_int(self.params.get("limit"), DEFAULT_LIMIT)
        skip = min(self.limit * (self.page - 1), MAX_SQL_INT)
        self.query = self.query.offset(skip).limit(self.limit)
        return self

    def apply(self) -> "QueryFeatures":
        return self.filter().sort().limit_fields().paginate()

"""
Default query scopes.

Every read or write that targets existing records goes through ``scoped_query``
with the kind of operation it performs. Secret tours and deactivated users are
hidden, and references are expanded with loader options.
"""
from enum import Enum

from sqlalchemy.orm import Query, Session, joinedload, selectinload

from . import models


class Operation(str, Enum):
    FIND_ONE = "findOne"
    FIND_MANY = "findMany"
    UPDATE_ONE = "updateOne"
    DELETE_ONE = "deleteOne"
    AGGREGATE = "aggregate"


def _hide_records(query: Query, model) -> Query:
    if model is models.Tour:
        return query.filter(models.Tour.secret_tour.is_(False))
    if model is models.User:
        return query.filter(models.User.active.is_(True))
    return query


def _expand_references(query: Query, model, operation: Operation) -> Query:
    if model is models.Review:
        return query.options(joinedload(models.Review.user))
    if model is models.Booking:
        return query.options(joinedload(models.Booking.user), joinedload(models.Booking.tour))
    if model is models.Tour:
        options = [selectinload(models.Tour.guides), selectinload(models.Tour.start_date_rows)]
        if operation is Operation.FIND_ONE:
            # reviews are only expanded on the detail view
            options.append(selectinload(models.Tour.reviews).joinedload(models.Review.user))
        return query.options(*options)
    return query


def apply_scope(query: Query, model, operation: Operation) -> Query:
    match operation:
        case Operation.FIND_ONE | Operation.FIND_MANY:
            query = _hide_records(query, model)
            return _expand_references(query, model, operation)
        case Operation.UPDATE_ONE | Operation.DELETE_ONE | Operation.AGGREGATE:
            return _hide_records(query, model)
    raise ValueError(f"Unknown operation: {operation!r}")


def scoped_query(db: Session, model, operation: Operation) -> Query:
    return apply_scope(db.query(model), model, operation)


def find_by_id(db: Session, model, record_id: int, operation: Operation = Operation.FIND_ONE):
    return scoped_query(db, model, operation).filter(model.id == record_id).first()

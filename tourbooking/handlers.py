"""
Generic CRUD handlers.

One ``ResourceHandler`` per model gives the routers list/get/create/update/delete
with uniform envelopes and errors. Resource-specific behaviour plugs in through
three callables:

- ``prepare(db, record, data)`` runs before the payload is assigned and may pop
  keys it handles itself (relationships, uploads).
- ``check(record)`` validates the record once every field is assigned.
- ``after_commit`` hooks receive ``(db, snapshot)`` once the change is durable;
  ``snapshot`` holds the record's column values.
"""
import logging
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import NotFound, from_integrity_error
from .query import QueryFeatures
from .schemas import dump
from .scopes import Operation, find_by_id, scoped_query

logger = logging.getLogger(__name__)

AfterCommit = Callable[[Session, dict], None]


def commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise from_integrity_error(str(exc.orig)) from exc


def success(doc: Any, key: str = "data") -> dict:
    return {"status": "success", "data": {key: doc}}


def success_list(docs: list, key: str = "data") -> dict:
    return {"status": "success", "results": len(docs), "data": {key: docs}}


class ResourceHandler:
    def __init__(
        self,
        model,
        schema,
        *,
        detail_schema=None,
        prepare: Callable[[Session, Any, dict], None] | None = None,
        check: Callable[[Any], None] | None = None,
        after_commit: Iterable[AfterCommit] = (),
        not_found_message: str = "No document found with that ID",
    ):
        self.model = model
        self.schema = schema
        self.detail_schema = detail_schema or schema
        self.prepare = prepare
        self.check = check
        self.after_commit = tuple(after_commit)
        self.not_found_message = not_found_message

    # ----- helpers -----
    def snapshot(self, record) -> dict:
        return {attr.key: getattr(record, attr.key) for attr in inspect(self.model).column_attrs}

    def _assign(self, db: Session, record, data: Mapping[str, Any]) -> None:
        data = dict(data)
        if self.prepare is not None:
            self.prepare(db, record, data)
        for field, value in data.items():
            setattr(record, field, value)
        if self.check is not None:
            self.check(record)

    def _run_hooks(self, db: Session, snapshot: dict) -> None:
        for hook in self.after_commit:
            hook(db, snapshot)

    def find(self, db: Session, record_id: int, operation: Operation = Operation.FIND_ONE):
        record = find_by_id(db, self.model, record_id, operation)
        if record is None:
            raise NotFound(self.not_found_message)
        return record

    # ----- operations -----
    def list_records(self, db: Session, params: Mapping[str, Any] | None, **scope) -> list[dict]:
        query = scoped_query(db, self.model, Operation.FIND_MANY)
        if scope:
            query = query.filter_by(**scope)
        features = QueryFeatures(query, self.model, params).apply()
        return [features.projection.apply(dump(self.schema, record)) for record in features.query.all()]

    def get_all(self, db: Session, params: Mapping[str, Any] | None, **scope) -> dict:
        return success_list(self.list_records(db, params, **scope))

    def get_one(self, db: Session, record_id: int) -> dict:
        return success(dump(self.detail_schema, self.find(db, record_id)))

    def create_record(self, db: Session, data: Mapping[str, Any]):
        record = self.model()
        self._assign(db, record, data)
        db.add(record)
        commit(db)
        logger.info("Created %s %s", self.model.__name__, record.id)
        self._run_hooks(db, self.snapshot(record))
        return record

    def create_one(self, db: Session, data: Mapping[str, Any]) -> dict:
        return success(dump(self.schema, self.create_record(db, data)))

    def update_record(self, db: Session, record, data: Mapping[str, Any]):
        self._assign(db, record, data)
        commit(db)
        self._run_hooks(db, self.snapshot(record))
        return record

    def update_one(self, db: Session, record_id: int, data: Mapping[str, Any]) -> dict:
        record = self.find(db, record_id, Operation.UPDATE_ONE)
        return success(dump(self.schema, self.update_record(db, record, data)))

    def delete_record(self, db: Session, record) -> None:
        snapshot = self.snapshot(record)
        db.delete(record)
        commit(db)
        logger.info("Deleted %s %s", self.model.__name__, snapshot["id"])
        self._run_hooks(db, snapshot)

    def delete_one(self, db: Session, record_id: int) -> None:
        self.delete_record(db, self.find(db, record_id, Operation.DELETE_ONE))

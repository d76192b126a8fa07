"""
Persistence gateway.

Thin, per-table access object exposing the handful of operations the
handlers need. Each call is a single round trip; a failing call is rolled
back and surfaces as ``PersistenceError``. Nothing here spans more than one
operation except ``append_messages``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import PersistenceError
from .models import Conversation, Message

logger = logging.getLogger(__name__)


class Collection:
    def __init__(self, db: Session, model):
        self.db = db
        self.model = model
        self.name = model.__tablename__

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{action} on {self.name} failed: {e}")
            raise PersistenceError(f"Failed to {action} {self.name}") from e

    def _query(self, criteria, filters):
        query = self.db.query(self.model)
        if criteria:
            query = query.filter(*criteria)
        if filters:
            query = query.filter_by(**filters)
        return query

    def insert_one(self, **values):
        with self._guard("create"):
            record = self.model(**values)
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            return record

    def find_one(self, *criteria, **filters):
        with self._guard("fetch"):
            return self._query(criteria, filters).first()

    def find_many(
        self,
        *criteria,
        order_by=None,
        skip: int = 0,
        limit: Optional[int] = None,
        **filters
    ) -> List:
        with self._guard("fetch"):
            query = self._query(criteria, filters)
            if order_by is not None:
                query = query.order_by(order_by)
            if skip:
                query = query.offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

    def count(self, *criteria, **filters) -> int:
        with self._guard("count"):
            return self._query(criteria, filters).count()

    def update_one(self, record_id: str, **values):
        with self._guard("update"):
            record = self.db.query(self.model).filter(self.model.id == record_id).first()
            if record is None:
                return None
            for key, value in values.items():
                setattr(record, key, value)
            self.db.commit()
            self.db.refresh(record)
            return record

    def group_count(self, key, *criteria, order_by=None) -> list:
        """Rows of ``(key, count)`` grouped by ``key``"""
        with self._guard("aggregate"):
            count = func.count().label("total")
            query = self.db.query(key.label("group_key"), count)
            if criteria:
                query = query.filter(*criteria)
            query = query.group_by(key)
            if order_by == "count":
                query = query.order_by(count.desc())
            else:
                query = query.order_by(key)
            return query.all()

    def scalar(self, expression, *criteria):
        with self._guard("aggregate"):
            query = self.db.query(expression)
            if criteria:
                query = query.filter(*criteria)
            return query.scalar()


def append_messages(db: Session, conversation: Conversation, messages: Iterable[Message]) -> Conversation:
    """Append a chat turn to a conversation in one transaction"""
    try:
        for message in messages:
            message.conversation_id = conversation.id
            db.add(message)
        conversation.updated_at = datetime.utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"append to conversation {conversation.id} failed: {e}")
        raise PersistenceError("Failed to save conversation") from e
    db.refresh(conversation)
    return conversation

"""
BaseService -- abstract base for every writing service.

Responsibility:
    Common constructor and session contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()``, never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush inside the caller's transaction
    and never commit or roll back.  The event handlers in ``pos_modules``
    (or ``session_scope()``) own commit/rollback, so a multi-step event
    (allocate, deduct, write lines, recalculate) is all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from pos_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel and engine-facing services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models; those belong in selectors.
    """

    def __init__(self, session: Session):
        self.session = session

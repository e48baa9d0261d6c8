"""Транзакционная граница движка расписания.

Одна логическая операция (создание занятия, один элемент bulk-цикла) = один
``UnitOfWork``. Сессия транзакции отдаётся явно через ``uow.session`` и
передаётся параметром во все функции доступа к данным.
"""
from __future__ import annotations
import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError, TimeoutError as PoolTimeoutError

from extensions import db
from blueprints.core.errors import TransactionAborted

log = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03", "57014"}
_USE_CONFIG = object()


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate in TRANSIENT_SQLSTATES:
            return True
        if "database is locked" in str(orig):
            return True
    return False


class UnitOfWork:
    def __init__(self, *, isolation_level=_USE_CONFIG, timeout_s: float | None = None):
        cfg = current_app.config
        if isolation_level is _USE_CONFIG:
            isolation_level = cfg.get("SCHEDULE_TX_ISOLATION", "SERIALIZABLE")
        self.isolation_level = isolation_level
        self.timeout_s = float(timeout_s if timeout_s is not None else cfg.get("SCHEDULE_TX_TIMEOUT_S", 10))
        # настоящая Session из scoped_session: у прокси нет in_transaction()
        self.session = db.session()
        self._started: float | None = None

    def __enter__(self) -> "UnitOfWork":
        session = self.session
        if session.new or session.dirty or session.deleted:
            raise RuntimeError("unit of work started over a session with unflushed changes")
        # уровень изоляции применяется только к новому соединению,
        # закрываем открытую читающую транзакцию
        if session.in_transaction():
            session.commit()

        options = {"isolation_level": self.isolation_level} if self.isolation_level else {}
        try:
            conn = session.connection(execution_options=options)
            if conn.dialect.name == "postgresql":
                ms = int(self.timeout_s * 1000)
                session.execute(text(f"SET LOCAL statement_timeout = {ms}"))
                session.execute(text(f"SET LOCAL lock_timeout = {ms}"))
            elif conn.dialect.name == "sqlite":
                # pysqlite открывает транзакцию только перед первой записью,
                # поэтому проверка конфликтов шла бы вне неё; берём блокировку сразу
                if not conn.connection.dbapi_connection.in_transaction:
                    session.execute(text("BEGIN IMMEDIATE"))
        except SQLAlchemyError as exc:
            session.rollback()
            if is_transient(exc):
                raise TransactionAborted("could not start transaction", cause=str(exc)) from exc
            raise
        self._started = time.monotonic()
        return self

    @property
    def elapsed(self) -> float:
        return time.monotonic() - (self._started or time.monotonic())

    def __exit__(self, exc_type, exc, tb) -> bool:
        session = self.session
        if exc_type is not None:
            session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_transient(exc):
                log.warning("transaction aborted: %s", exc)
                raise TransactionAborted("transaction aborted", cause=str(exc)) from exc
            return False

        if self.elapsed > self.timeout_s:
            session.rollback()
            log.warning("transaction exceeded %.1fs, rolled back", self.timeout_s)
            raise TransactionAborted("transaction timeout exceeded", timeout_s=self.timeout_s)

        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            if is_transient(exc):
                log.warning("commit aborted: %s", exc)
                raise TransactionAborted("transaction aborted on commit", cause=str(exc)) from exc
            raise
        return False

"""Path-addressed document store backed by SQLAlchemy.

This is the only place that touches the database. Everything else reads and
writes session state through :class:`SessionStore` using slash separated
paths (``games/1234``, ``games/1234/currentQuestion/status``) and receives
changes through :meth:`SessionStore.subscribe`.

Semantics:

- ``write_partial`` merges several relative paths into one document in a
  single commit. Concurrent partial writes are merged leaf by leaf (last
  write wins per leaf, never per whole record).
- every committed write bumps the document ``version``; passing
  ``expected_version`` turns a partial write into a compare-and-swap.
- subscribers are called after commit with the snapshot current at delivery
  time; nested writes made from inside a callback are queued, so callbacks
  never observe an older snapshot after a newer one.
"""
from __future__ import annotations

import copy
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from buzzquiz import db
from buzzquiz.errors import NotFound, StoreUnavailable, VersionConflict
from buzzquiz.models import Document, encode_body, index_value

Callback = Callable[[Optional[Any]], None]

# Retries for a plain (non-CAS) partial write losing a concurrent update race
_MERGE_ATTEMPTS = 5


def split_path(path: str) -> List[str]:
    parts = [p for p in str(path).strip('/').split('/') if p]
    if not parts:
        raise ValueError('empty store path')
    return parts


def join_path(*parts) -> str:
    return '/'.join(str(p).strip('/') for p in parts if str(p).strip('/'))


def _related(a: List[str], b: List[str]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


def _get_in(value, parts: List[str]):
    for part in parts:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _set_in(value, parts: List[str], new_value):
    if not parts:
        return new_value
    if not isinstance(value, dict):
        value = {}
    head, rest = parts[0], parts[1:]
    value[head] = _set_in(value.get(head), rest, new_value)
    return value


def _delete_in(value, parts: List[str]):
    if not parts or not isinstance(value, dict):
        return value
    head, rest = parts[0], parts[1:]
    if not rest:
        value.pop(head, None)
    elif head in value:
        value[head] = _delete_in(value[head], rest)
    return value


class SessionStore:
    def __init__(self, database=None):
        self.db = database or db
        self._subscriptions: Dict[str, List[Callback]] = {}
        self._sub_lock = threading.RLock()
        self._pending: deque = deque()
        self._queue_lock = threading.Lock()
        self._draining = False

    # ---- reads ----

    def read_once(self, path: str):
        """Return a deep copy of the value at ``path`` or ``None``."""
        value, _ = self._read(split_path(path))
        return value

    def read_versioned(self, path: str) -> Tuple[Any, Optional[int]]:
        """Return ``(value, version)`` where version belongs to the top-level document."""
        return self._read(split_path(path))

    def _read(self, parts: List[str]):
        try:
            if len(parts) == 1:
                rows = Document.query.filter_by(collection=parts[0]).populate_existing().all()
                if not rows:
                    return None, None
                return {row.key: row.value for row in rows}, None
            row = self.db.session.get(Document, (parts[0], parts[1]), populate_existing=True)
            if row is None:
                return None, None
            return copy.deepcopy(_get_in(row.value, parts[2:])), row.version
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreUnavailable(f'read {"/".join(parts)} failed: {exc}') from exc

    def query_by_equality(self, collection: str, field: str, value, limit: int = 10):
        """Return ``[(key, document), ...]`` whose indexed ``field`` equals ``value``, oldest first."""
        if field not in Document.INDEXED_FIELDS:
            raise ValueError(f'{field!r} is not an indexed field')
        try:
            rows = (
                Document.query
                .filter_by(collection=collection, **{field: str(value)})
                .order_by(Document.created_at.asc())
                .limit(limit)
                .all()
            )
            return [(row.key, row.value) for row in rows]
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreUnavailable(f'query {collection} {field}={value} failed: {exc}') from exc

    # ---- writes ----

    def write_full(self, path: str, value) -> None:
        """Replace the value at ``path``. Writing ``None`` removes it."""
        parts = split_path(path)
        if len(parts) < 2:
            raise ValueError('write_full needs at least collection/key')
        if value is None:
            self.remove(path)
            return
        try:
            row = self.db.session.get(Document, (parts[0], parts[1]), populate_existing=True)
            if row is None:
                row = Document(collection=parts[0], key=parts[1], version=1)
                row.value = _set_in({}, parts[2:], copy.deepcopy(value))
                self.db.session.add(row)
            else:
                row.value = _set_in(row.value, parts[2:], copy.deepcopy(value))
                row.version = row.version + 1
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreUnavailable(f'write {path} failed: {exc}') from exc
        self._notify(parts)

    def create(self, path: str, value) -> bool:
        """Store ``value`` as a new top-level document unless one already exists.

        Returns whether this call created it. The primary key makes the check
        and the insert one atomic step, so of two racing callers only one wins.
        """
        parts = split_path(path)
        if len(parts) != 2:
            raise ValueError('create needs exactly collection/key')
        try:
            if self.db.session.get(Document, (parts[0], parts[1]), populate_existing=True) is not None:
                self.db.session.rollback()
                return False
            row = Document(collection=parts[0], key=parts[1], version=1)
            row.value = copy.deepcopy(value)
            self.db.session.add(row)
            self.db.session.commit()
        except IntegrityError:
            self.db.session.rollback()
            return False
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreUnavailable(f'create {path} failed: {exc}') from exc
        self._notify(parts)
        return True

    def write_partial(self, path: str, updates: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        """Merge ``{relative/path: value}`` into the document at ``path`` in one commit.

        Returns the new document version. Raises :class:`VersionConflict`
        when ``expected_version`` no longer matches and :class:`NotFound`
        when the document does not exist (a partial write never resurrects
        a removed session).
        """
        parts = split_path(path)
        if len(parts) < 2:
            raise ValueError('write_partial needs at least collection/key')
        if not updates:
            return expected_version or 0
        for _ in range(_MERGE_ATTEMPTS):
            try:
                row = self.db.session.get(Document, (parts[0], parts[1]), populate_existing=True)
                if row is None:
                    self.db.session.rollback()
                    raise NotFound(f'{join_path(*parts[:2])} does not exist')
                current_version = row.version
                if expected_version is not None and current_version != expected_version:
                    self.db.session.rollback()
                    raise VersionConflict(
                        f'{join_path(*parts[:2])} is at version {current_version}, expected {expected_version}'
                    )
                merged = row.value
                for rel, new_value in updates.items():
                    merged = _set_in(merged, parts[2:] + split_path(rel), copy.deepcopy(new_value))
                # Conditional UPDATE: only applies if nobody committed in between
                applied = (
                    Document.query
                    .filter_by(collection=parts[0], key=parts[1], version=current_version)
                    .update({
                        'body': encode_body(merged),
                        'status': index_value(merged, 'status'),
                        'version': current_version + 1,
                        'updated_at': time.time(),
                    }, synchronize_session=False)
                )
                if applied:
                    self.db.session.commit()
                    break
                self.db.session.rollback()
                if expected_version is not None:
                    raise VersionConflict(f'{join_path(*parts[:2])} changed during write')
            except SQLAlchemyError as exc:
                self.db.session.rollback()
                raise StoreUnavailable(f'update {path} failed: {exc}') from exc
        else:
            raise StoreUnavailable(f'update {path} kept losing concurrent writes')
        self._notify(parts)
        return current_version + 1

    def remove(self, path: str) -> None:
        parts = split_path(path)
        try:
            if len(parts) == 1:
                Document.query.filter_by(collection=parts[0]).delete()
            elif len(parts) == 2:
                Document.query.filter_by(collection=parts[0], key=parts[1]).delete()
            else:
                row = self.db.session.get(Document, (parts[0], parts[1]))
                if row is None:
                    return
                row.value = _delete_in(row.value, parts[2:])
                row.version = row.version + 1
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreUnavailable(f'remove {path} failed: {exc}') from exc
        self._notify(parts)

    # ---- subscriptions ----

    def subscribe(self, path: str, callback: Callback) -> Callable[[], None]:
        """Call ``callback(snapshot_or_None)`` after every write touching ``path``."""
        key = join_path(*split_path(path))
        with self._sub_lock:
            self._subscriptions.setdefault(key, []).append(callback)

        def unsubscribe():
            with self._sub_lock:
                callbacks = self._subscriptions.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscriptions.pop(key, None)

        return unsubscribe

    def _notify(self, written: List[str]) -> None:
        with self._queue_lock:
            self._pending.append(written)
            if self._draining:
                return
            self._draining = True
        try:
            while True:
                with self._queue_lock:
                    if not self._pending:
                        self._draining = False
                        return
                    parts = self._pending.popleft()
                self._deliver(parts)
        except BaseException:
            with self._queue_lock:
                self._draining = False
            raise

    def _deliver(self, written: List[str]) -> None:
        with self._sub_lock:
            targets = [
                (key, list(callbacks))
                for key, callbacks in self._subscriptions.items()
                if _related(split_path(key), written)
            ]
        for key, callbacks in targets:
            try:
                snapshot = self.read_once(key)
            except StoreUnavailable:
                current_app.logger.exception(f"[store] snapshot read failed path={key}")
                continue
            for callback in callbacks:
                try:
                    callback(copy.deepcopy(snapshot))
                except Exception:
                    current_app.logger.exception(f"[store] subscriber failed path={key}")


def get_store() -> SessionStore:
    return current_app.extensions['session_store']

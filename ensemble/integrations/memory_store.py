"""
In-process Firestore backend (開発用フォールバック)

Implements the FirestoreClient storage hooks against a dict so the services
can run without an emulator: merge upserts, equality/range/``in`` filters,
ordering, atomic batches and live listeners that fire synchronously on write.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from .firestore_client import (
    BatchWrite,
    DocumentReference,
    DocumentSnapshot,
    FirestoreClient,
    FirestoreConfig,
    FirestoreQuery,
    QueryFilter,
    SnapshotCallback,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

_MISSING = object()


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """set(merge=True) と同じくネストしたマップを再帰的にマージ"""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _lookup(data: Dict[str, Any], field: str) -> Any:
    """Resolve a dotted field path, _MISSING when absent"""
    current: Any = data
    for part in field.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _sort_key(value: Any) -> Tuple[int, Any]:
    """Firestoreの型順序（null < bool < number < timestamp < string）"""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (3, value.timestamp())
    if isinstance(value, str):
        return (4, value)
    return (5, repr(value))


def _matches(data: Dict[str, Any], condition: QueryFilter) -> bool:
    value = _lookup(data, condition.field)
    if value is _MISSING:
        return False

    op = condition.operator
    expected = condition.value
    if op == "==":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "in":
        return value in expected
    if op == "not-in":
        return value not in expected
    if op == "array-contains":
        return isinstance(value, list) and expected in value
    if op == "array-contains-any":
        return isinstance(value, list) and any(item in value for item in expected)

    left, right = _sort_key(value), _sort_key(expected)
    if left[0] != right[0]:
        return False
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    raise ValueError(f"Unsupported operator: {op}")


class InMemoryFirestoreClient(FirestoreClient):
    """メモリ上のFirestore互換クライアント"""

    def __init__(self, config: FirestoreConfig = None):
        super().__init__(config or FirestoreConfig(project_id="in-memory"))
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._times: Dict[str, Tuple[datetime, datetime]] = {}
        self._listeners: Dict[int, Tuple[FirestoreQuery, SnapshotCallback]] = {}
        self._next_listener_id = 0

    async def _open_connection(self):
        logger.info("インメモリFirestoreを使用")

    async def disconnect(self):
        self._listeners.clear()
        await super().disconnect()

    def _snapshot(self, path: str) -> DocumentSnapshot:
        document_id = path.rsplit("/", 1)[-1]
        if path not in self._documents:
            return DocumentSnapshot(document_id=document_id, exists=False)
        created, updated = self._times[path]
        return DocumentSnapshot(
            document_id=document_id,
            data=copy.deepcopy(self._documents[path]),
            exists=True,
            create_time=created,
            update_time=updated
        )

    def _apply_set(self, path: str, data: Dict[str, Any], merge: bool):
        now = datetime.now(timezone.utc)
        if merge and path in self._documents:
            _deep_merge(self._documents[path], data)
        else:
            self._documents[path] = copy.deepcopy(data)
        created = self._times.get(path, (now, now))[0]
        self._times[path] = (created, now)

    def _apply_delete(self, path: str):
        self._documents.pop(path, None)
        self._times.pop(path, None)

    def _run_query(self, query: FirestoreQuery) -> List[DocumentSnapshot]:
        prefix = query.collection_path
        paths = [
            path for path in self._documents
            if path.rsplit("/", 1)[0] == prefix
        ]

        rows = []
        for path in paths:
            data = self._documents[path]
            if not all(_matches(data, condition) for condition in query.filters):
                continue
            # orderBy excludes documents lacking the field
            if any(_lookup(data, order.field) is _MISSING for order in query.orders):
                continue
            rows.append(path)

        rows.sort(key=lambda p: p.rsplit("/", 1)[-1])
        for order in reversed(query.orders):
            rows.sort(
                key=lambda p, field=order.field: _sort_key(_lookup(self._documents[p], field)),
                reverse=order.direction == "desc"
            )

        if query.limit:
            rows = rows[:query.limit]
        return [self._snapshot(path) for path in rows]

    def _notify(self, paths: List[str]):
        """書き込み後にリスナーへ配信（コールバックの例外は書き込みを失敗させない）"""
        collections = {path.rsplit("/", 1)[0] for path in paths}
        for query, callback in list(self._listeners.values()):
            if query.collection_path not in collections:
                continue
            try:
                callback(self._run_query(query))
            except Exception as e:
                logger.error(f"リスナーコールバックエラー: {query.collection_path} - {str(e)}")

    async def _read_document(self, doc_ref: DocumentReference) -> DocumentSnapshot:
        return self._snapshot(doc_ref.full_path)

    async def _write_document(self, doc_ref: DocumentReference, data: Dict[str, Any], merge: bool):
        self._apply_set(doc_ref.full_path, data, merge)
        self._notify([doc_ref.full_path])

    async def _delete_document(self, doc_ref: DocumentReference):
        self._apply_delete(doc_ref.full_path)
        self._notify([doc_ref.full_path])

    async def _execute_query(self, query: FirestoreQuery) -> List[DocumentSnapshot]:
        return self._run_query(query)

    def _watch_query(self, query: FirestoreQuery, callback: SnapshotCallback) -> Unsubscribe:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = (query, callback)

        # on_snapshot と同様に初回スナップショットを即時配信
        callback(self._run_query(query))

        def detach():
            self._listeners.pop(listener_id, None)

        return detach

    async def _execute_batch(self, operations: List[BatchWrite]):
        touched = []
        for operation in operations:
            path = operation.document_ref.full_path
            if operation.operation_type == "delete":
                self._apply_delete(path)
            elif operation.operation_type == "set":
                self._apply_set(path, operation.data or {}, operation.merge)
            else:
                raise ValueError(f"Unknown batch operation: {operation.operation_type}")
            touched.append(path)
        self._notify(touched)

    def dump(self) -> Dict[str, Dict[str, Any]]:
        """全ドキュメントのコピー（デバッグ用）"""
        return copy.deepcopy(self._documents)

"""
Firestore接続・ドキュメント操作

Async wrapper over google-cloud-firestore. Reads and writes go through
``AsyncClient``; live query watches use the sync ``Client`` because only it
exposes ``on_snapshot``.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class DocumentStoreError(Exception):
    """Backend operation rejected (network, permission, quota...)"""
    pass


class FirestoreConfig(BaseModel):
    """Firestore設定"""
    project_id: str
    database_id: str = "(default)"
    credentials_path: Optional[str] = None
    emulator_host: Optional[str] = None  # 開発環境用


class DocumentReference(BaseModel):
    """ドキュメント参照"""
    collection: str
    document_id: str
    parent_path: Optional[str] = None

    @property
    def collection_path(self) -> str:
        if self.parent_path:
            return f"{self.parent_path}/{self.collection}"
        return self.collection

    @property
    def full_path(self) -> str:
        """完全パス取得"""
        return f"{self.collection_path}/{self.document_id}"

    @classmethod
    def from_path(cls, path: str) -> "DocumentReference":
        """Build a reference from a slash separated document path"""
        segments = [segment for segment in path.split("/") if segment]
        if len(segments) < 2 or len(segments) % 2 != 0:
            raise ValueError(f"Not a document path: {path!r}")
        parent = "/".join(segments[:-2]) or None
        return cls(collection=segments[-2], document_id=segments[-1], parent_path=parent)


class QueryFilter(BaseModel):
    """クエリフィルタ"""
    field: str
    operator: str  # ==, !=, <, <=, >, >=, array-contains, in, not-in
    value: Any


class QueryOrder(BaseModel):
    """クエリ順序"""
    field: str
    direction: str = "asc"  # asc, desc


class FirestoreQuery(BaseModel):
    """Firestoreクエリ"""
    collection: str
    filters: List[QueryFilter] = Field(default_factory=list)
    orders: List[QueryOrder] = Field(default_factory=list)
    limit: Optional[int] = None
    parent_path: Optional[str] = None

    @property
    def collection_path(self) -> str:
        if self.parent_path:
            return f"{self.parent_path}/{self.collection}"
        return self.collection


class DocumentSnapshot(BaseModel):
    """ドキュメントスナップショット"""
    document_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    exists: bool
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    read_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchWrite(BaseModel):
    """バッチ書き込み操作"""
    operation_type: str  # set, delete
    document_ref: DocumentReference
    data: Optional[Dict[str, Any]] = None
    merge: bool = True


SnapshotCallback = Callable[[List[DocumentSnapshot]], None]


class FirestoreClient:
    """
    Firestore接続クライアント
    - 非同期接続管理
    - バッチ操作
    - ライブクエリ購読
    - エラーハンドリング（リトライなし、呼び出し元へ伝播）
    """

    MAX_BATCH_SIZE = 500  # Firestore制限

    def __init__(self, config: FirestoreConfig):
        self.config = config
        self.is_connected = False

        self._client = None
        self._sync_client = None

        # 統計情報
        self.stats = {
            "reads": 0,
            "writes": 0,
            "watches": 0,
            "errors": 0
        }

    async def connect(self) -> bool:
        """Firestore接続確立"""
        logger.info(f"Firestore接続開始: {self.config.project_id}")
        try:
            await self._open_connection()
        except Exception as e:
            logger.error(f"Firestore接続エラー: {str(e)}")
            raise DocumentStoreError(f"Could not connect to Firestore: {e}") from e

        self.is_connected = True
        logger.info("Firestore接続成功")
        return True

    async def disconnect(self):
        """接続切断"""
        logger.info("Firestore接続切断")
        self._client = None
        self._sync_client = None
        self.is_connected = False

    def _ensure_connected(self):
        if not self.is_connected:
            raise ConnectionError("Firestoreに接続されていません")

    async def get_document(self, doc_ref: DocumentReference) -> DocumentSnapshot:
        """ドキュメント取得（存在しない場合は exists=False）"""
        self._ensure_connected()
        logger.debug(f"Firestore読み取り: {doc_ref.full_path}")

        try:
            snapshot = await self._read_document(doc_ref)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"ドキュメント取得エラー: {doc_ref.full_path} - {str(e)}")
            raise DocumentStoreError(f"Read failed for {doc_ref.full_path}: {e}") from e

        self.stats["reads"] += 1
        return snapshot

    async def set_document(self, doc_ref: DocumentReference, data: Dict[str, Any], merge: bool = False) -> None:
        """ドキュメント設定（merge=True でupsert + フィールド上書き）"""
        self._ensure_connected()
        logger.debug(f"Firestore書き込み: {doc_ref.full_path} (merge={merge})")

        try:
            await self._write_document(doc_ref, data, merge)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"ドキュメント設定エラー: {doc_ref.full_path} - {str(e)}")
            raise DocumentStoreError(f"Write failed for {doc_ref.full_path}: {e}") from e

        self.stats["writes"] += 1

    async def update_document(self, doc_ref: DocumentReference, data: Dict[str, Any]) -> None:
        """ドキュメント更新"""
        await self.set_document(doc_ref, data, merge=True)

    async def delete_document(self, doc_ref: DocumentReference) -> None:
        """ドキュメント削除"""
        self._ensure_connected()
        logger.debug(f"Firestore削除: {doc_ref.full_path}")

        try:
            await self._delete_document(doc_ref)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"ドキュメント削除エラー: {doc_ref.full_path} - {str(e)}")
            raise DocumentStoreError(f"Delete failed for {doc_ref.full_path}: {e}") from e

        self.stats["writes"] += 1

    async def query_documents(self, query: FirestoreQuery) -> List[DocumentSnapshot]:
        """ドキュメントクエリ"""
        self._ensure_connected()
        logger.debug(f"Firestoreクエリ: {query.collection_path}")

        try:
            results = await self._execute_query(query)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"クエリ実行エラー: {query.collection_path} - {str(e)}")
            raise DocumentStoreError(f"Query failed for {query.collection_path}: {e}") from e

        self.stats["reads"] += len(results)
        return results

    def watch_query(self, query: FirestoreQuery, callback: SnapshotCallback) -> Unsubscribe:
        """
        ライブクエリ購読

        The callback receives the full result list on every change. The
        returned function detaches the listener; once it returns no further
        callback is delivered.
        """
        self._ensure_connected()

        active = True

        def _deliver(snapshots: List[DocumentSnapshot]):
            if active:
                callback(snapshots)

        try:
            detach = self._watch_query(query, _deliver)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"購読開始エラー: {query.collection_path} - {str(e)}")
            raise DocumentStoreError(f"Watch failed for {query.collection_path}: {e}") from e

        self.stats["watches"] += 1
        logger.info(f"ライブ購読開始: {query.collection_path}")

        def unsubscribe():
            nonlocal active
            if not active:
                return
            active = False
            detach()
            self.stats["watches"] -= 1
            logger.info(f"ライブ購読解除: {query.collection_path}")

        return unsubscribe

    async def batch_write(self, operations: List[BatchWrite]) -> None:
        """バッチ書き込み（アトミック）"""
        self._ensure_connected()

        if len(operations) > self.MAX_BATCH_SIZE:
            raise ValueError(f"バッチ操作は{self.MAX_BATCH_SIZE}件まで")
        if not operations:
            return

        try:
            await self._execute_batch(operations)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"バッチ書き込みエラー: {str(e)}")
            raise DocumentStoreError(f"Batch write failed: {e}") from e

        self.stats["writes"] += len(operations)
        logger.debug(f"バッチ操作実行: {len(operations)}件")

    async def batch_write_chunked(self, operations: List[BatchWrite]) -> int:
        """
        MAX_BATCH_SIZE 件ずつ分割してバッチ書き込み

        Each chunk is atomic on its own; a failing chunk leaves the earlier
        ones committed.
        """
        for offset in range(0, len(operations), self.MAX_BATCH_SIZE):
            await self.batch_write(operations[offset:offset + self.MAX_BATCH_SIZE])
        return len(operations)

    def get_stats(self) -> Dict[str, Any]:
        """統計情報取得"""
        return {
            **self.stats,
            "backend": type(self).__name__,
            "connection_status": "connected" if self.is_connected else "disconnected"
        }

    # --- google-cloud-firestore backend -------------------------------------

    def _credentials(self):
        if not self.config.credentials_path:
            return None
        from google.oauth2 import service_account
        return service_account.Credentials.from_service_account_file(self.config.credentials_path)

    async def _open_connection(self):
        from google.cloud import firestore

        if self.config.emulator_host:
            logger.info(f"Firestoreエミュレータ接続: {self.config.emulator_host}")
            os.environ["FIRESTORE_EMULATOR_HOST"] = self.config.emulator_host
        else:
            logger.info("本番Firestore接続")

        self._client = firestore.AsyncClient(
            project=self.config.project_id,
            database=self.config.database_id,
            credentials=self._credentials()
        )

    def _sync(self):
        """Watch用の同期クライアント（遅延生成）"""
        if self._sync_client is None:
            from google.cloud import firestore
            self._sync_client = firestore.Client(
                project=self.config.project_id,
                database=self.config.database_id,
                credentials=self._credentials()
            )
        return self._sync_client

    @staticmethod
    def _to_snapshot(snap) -> DocumentSnapshot:
        return DocumentSnapshot(
            document_id=snap.id,
            data=snap.to_dict() or {},
            exists=snap.exists,
            create_time=snap.create_time,
            update_time=snap.update_time,
            read_time=snap.read_time or datetime.now(timezone.utc)
        )

    @staticmethod
    def _build_query(client, query: FirestoreQuery):
        from google.cloud import firestore
        from google.cloud.firestore_v1 import FieldFilter

        ref = client.collection(query.collection_path)
        for condition in query.filters:
            ref = ref.where(filter=FieldFilter(condition.field, condition.operator, condition.value))
        for order in query.orders:
            direction = firestore.Query.DESCENDING if order.direction == "desc" else firestore.Query.ASCENDING
            ref = ref.order_by(order.field, direction=direction)
        if query.limit:
            ref = ref.limit(query.limit)
        return ref

    async def _read_document(self, doc_ref: DocumentReference) -> DocumentSnapshot:
        snap = await self._client.document(doc_ref.full_path).get()
        return self._to_snapshot(snap)

    async def _write_document(self, doc_ref: DocumentReference, data: Dict[str, Any], merge: bool):
        await self._client.document(doc_ref.full_path).set(data, merge=merge)

    async def _delete_document(self, doc_ref: DocumentReference):
        await self._client.document(doc_ref.full_path).delete()

    async def _execute_query(self, query: FirestoreQuery) -> List[DocumentSnapshot]:
        docs = await self._build_query(self._client, query).get()
        return [self._to_snapshot(doc) for doc in docs]

    def _watch_query(self, query: FirestoreQuery, callback: SnapshotCallback) -> Unsubscribe:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        def _on_snapshot(docs, changes, read_time):
            snapshots = [self._to_snapshot(doc) for doc in docs]
            # Watch callbacks arrive on a background thread
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(callback, snapshots)
            else:
                callback(snapshots)

        watch = self._build_query(self._sync(), query).on_snapshot(_on_snapshot)
        return watch.unsubscribe

    async def _execute_batch(self, operations: List[BatchWrite]):
        batch = self._client.batch()
        for operation in operations:
            ref = self._client.document(operation.document_ref.full_path)
            if operation.operation_type == "delete":
                batch.delete(ref)
            else:
                batch.set(ref, operation.data or {}, merge=operation.merge)
        await batch.commit()

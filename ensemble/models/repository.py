"""
Firestore Repository 基底クラス

CRUD操作と暗号化機能を提供します。
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, TypeVar

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel

from ..integrations.firestore_client import (
    DocumentReference,
    FirestoreClient,
    FirestoreQuery,
    QueryFilter,
    QueryOrder,
)
from .event import Event, normalize_event, utcnow
from .profile import UserProfile
from .inquiry import Inquiry

# ログ設定
logger = logging.getLogger(__name__)

# 型変数
T = TypeVar('T', bound=BaseModel)


class RepositoryError(Exception):
    """リポジトリエラー基底クラス"""
    pass


class DocumentNotFoundError(RepositoryError):
    """ドキュメント未発見エラー"""
    pass


class ValidationError(RepositoryError):
    """バリデーションエラー"""
    pass


class EncryptionError(RepositoryError):
    """暗号化エラー"""
    pass


class EncryptionManager:
    """暗号化・復号化管理"""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        暗号化マネージャーを初期化

        Args:
            encryption_key: Fernetキー（urlsafe base64）
        """
        if encryption_key is None:
            encryption_key = os.getenv('ENCRYPTION_KEY')

        if not encryption_key:
            # 開発環境用の一時キー（本番では必ず環境変数を設定）
            logger.warning("暗号化キーが設定されていません。一時キーを使用します。")
            encryption_key = Fernet.generate_key().decode()

        try:
            self.fernet = Fernet(encryption_key.encode() if isinstance(encryption_key, str) else encryption_key)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"暗号化キーの初期化に失敗しました: {e}") from e

    def encrypt(self, data: str) -> str:
        """文字列を暗号化"""
        return self.fernet.encrypt(data.encode('utf-8')).decode('utf-8')

    def decrypt(self, encrypted_data: str) -> str:
        """暗号化された文字列を復号化"""
        try:
            return self.fernet.decrypt(encrypted_data.encode('utf-8')).decode('utf-8')
        except (InvalidToken, ValueError) as e:
            raise EncryptionError(f"復号化に失敗しました: {e}") from e

    def encrypt_dict(self, data: Dict[str, Any], encrypt_fields: List[str]) -> Dict[str, Any]:
        """辞書の指定フィールドを暗号化"""
        result = data.copy()
        for field in encrypt_fields:
            if result.get(field) is not None:
                result[field] = self.encrypt(str(result[field]))
        return result

    def decrypt_dict(self, data: Dict[str, Any], encrypt_fields: List[str]) -> Dict[str, Any]:
        """辞書の指定フィールドを復号化"""
        result = data.copy()
        for field in encrypt_fields:
            if isinstance(result.get(field), str):
                try:
                    result[field] = self.decrypt(result[field])
                except EncryptionError:
                    # 暗号化前に書き込まれたデータの可能性
                    logger.warning(f"フィールド {field} の復号化に失敗しました（平文として扱います）")
        return result


class BaseRepository(ABC, Generic[T]):
    """Firestore リポジトリ基底クラス"""

    def __init__(
        self,
        client: FirestoreClient,
        collection_name: str,
        encryption_manager: Optional[EncryptionManager] = None
    ):
        """
        リポジトリを初期化

        Args:
            client: FirestoreClient（接続済み）
            collection_name: Firestoreコレクション名
            encryption_manager: 暗号化マネージャー（暗号化フィールドがある場合のみ使用）
        """
        self.client = client
        self.collection_name = collection_name
        self.encrypted_fields = self._get_encrypted_fields()
        self.encryption_manager = encryption_manager
        if self.encrypted_fields and self.encryption_manager is None:
            self.encryption_manager = EncryptionManager()

    @abstractmethod
    def _entity_id(self, entity: T) -> str:
        """エンティティIDを返す（継承クラスで実装）"""

    @abstractmethod
    def _to_storage(self, entity: T) -> Dict[str, Any]:
        """エンティティ → 保存用辞書"""

    @abstractmethod
    def _from_storage(self, document_id: str, data: Dict[str, Any]) -> T:
        """保存データ → エンティティ"""

    def _get_encrypted_fields(self) -> List[str]:
        """暗号化対象フィールドのリストを返す（オーバーライド可能）"""
        return []

    def _ref(self, entity_id: str) -> DocumentReference:
        if not entity_id:
            raise ValidationError(f"{self.collection_name}: missing document id")
        return DocumentReference(collection=self.collection_name, document_id=entity_id)

    def _prepare_data_for_storage(self, entity: T) -> Dict[str, Any]:
        """ストレージ用にデータを準備"""
        data = self._to_storage(entity)
        if self.encrypted_fields:
            data = self.encryption_manager.encrypt_dict(data, self.encrypted_fields)
        return data

    def _prepare_data_from_storage(self, document_id: str, data: Dict[str, Any]) -> T:
        """ストレージからデータを復元"""
        if self.encrypted_fields:
            data = self.encryption_manager.decrypt_dict(data, self.encrypted_fields)
        return self._from_storage(document_id, data)

    async def create(self, entity: T) -> T:
        """エンティティを作成（既存IDはエラー）"""
        entity_id = self._entity_id(entity)
        doc_ref = self._ref(entity_id)

        if (await self.client.get_document(doc_ref)).exists:
            raise ValidationError(f"ID {entity_id} のドキュメントは既に存在します")

        await self.client.set_document(doc_ref, self._prepare_data_for_storage(entity))
        logger.info(f"{self.collection_name}に新しいドキュメントを作成: {entity_id}")
        return entity

    async def save(self, entity: T) -> T:
        """エンティティをマージ保存（upsert）"""
        entity_id = self._entity_id(entity)
        await self.client.set_document(
            self._ref(entity_id), self._prepare_data_for_storage(entity), merge=True
        )
        logger.info(f"{self.collection_name}ドキュメントを保存: {entity_id}")
        return entity

    async def get_by_id(self, entity_id: str) -> Optional[T]:
        """IDでエンティティを取得"""
        snapshot = await self.client.get_document(self._ref(entity_id))
        if not snapshot.exists:
            return None
        return self._prepare_data_from_storage(snapshot.document_id, snapshot.data)

    async def update_fields(self, entity_id: str, fields: Dict[str, Any]) -> None:
        """既存ドキュメントの一部フィールドを更新"""
        doc_ref = self._ref(entity_id)
        if not (await self.client.get_document(doc_ref)).exists:
            raise DocumentNotFoundError(f"ID {entity_id} のドキュメントが見つかりません")

        if self.encrypted_fields:
            fields = self.encryption_manager.encrypt_dict(fields, self.encrypted_fields)
        await self.client.update_document(doc_ref, fields)
        logger.info(f"{self.collection_name}ドキュメントを更新: {entity_id}")

    async def delete(self, entity_id: str) -> bool:
        """エンティティを削除（存在しなければ False）"""
        doc_ref = self._ref(entity_id)
        if not (await self.client.get_document(doc_ref)).exists:
            return False

        await self.client.delete_document(doc_ref)
        logger.info(f"{self.collection_name}ドキュメントを削除: {entity_id}")
        return True

    async def exists(self, entity_id: str) -> bool:
        """エンティティの存在確認"""
        return (await self.client.get_document(self._ref(entity_id))).exists

    async def list_all(
        self,
        filters: Optional[List[QueryFilter]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None
    ) -> List[T]:
        """全エンティティを一覧取得"""
        query = FirestoreQuery(
            collection=self.collection_name,
            filters=filters or [],
            orders=[QueryOrder(field=order_by, direction="asc" if ascending else "desc")] if order_by else [],
            limit=limit
        )
        snapshots = await self.client.query_documents(query)
        return [
            self._prepare_data_from_storage(snapshot.document_id, snapshot.data)
            for snapshot in snapshots
        ]

    async def find_by_field(self, field_name: str, value: Any, limit: Optional[int] = None) -> List[T]:
        """指定フィールドでエンティティを検索"""
        return await self.list_all(
            filters=[QueryFilter(field=field_name, operator="==", value=value)],
            limit=limit
        )


class EventRepository(BaseRepository[Event]):
    """Event エンティティ用リポジトリ（collection: events）"""

    def __init__(self, client: FirestoreClient):
        super().__init__(client, "events")

    def _entity_id(self, entity: Event) -> str:
        return entity.id

    def _to_storage(self, entity: Event) -> Dict[str, Any]:
        return entity.to_dict()

    def _from_storage(self, document_id: str, data: Dict[str, Any]) -> Event:
        return normalize_event(document_id, data)


class ProfileRepository(BaseRepository[UserProfile]):
    """UserProfile 用リポジトリ（collection: users、電話番号は暗号化）"""

    def __init__(self, client: FirestoreClient, encryption_manager: Optional[EncryptionManager] = None):
        super().__init__(client, "users", encryption_manager)

    def _entity_id(self, entity: UserProfile) -> str:
        return entity.uid

    def _get_encrypted_fields(self) -> List[str]:
        return ["phoneNumber"]

    def _to_storage(self, entity: UserProfile) -> Dict[str, Any]:
        data = entity.to_dict()
        data["updatedAt"] = utcnow()
        if data.get("createdAt") is None:
            data.pop("createdAt")
        return data

    def _from_storage(self, document_id: str, data: Dict[str, Any]) -> UserProfile:
        return UserProfile.from_dict(document_id, data)

    async def get_many(self, uids: List[str]) -> Dict[str, UserProfile]:
        """複数プロフィールをまとめて取得（存在するもののみ）"""
        profiles = {}
        for uid in dict.fromkeys(uids):
            profile = await self.get_by_id(uid)
            if profile is not None:
                profiles[uid] = profile
        return profiles

    async def update_user_roles(self, uid: str, roles: List[str]) -> None:
        """roles を更新（ドキュメントが無い古いアカウントは作成）"""
        await self.client.set_document(
            self._ref(uid), {"roles": list(roles), "updatedAt": utcnow()}, merge=True
        )
        logger.info(f"ロール更新: {uid} -> {roles}")


class InquiryRepository(BaseRepository[Inquiry]):
    """Inquiry 用リポジトリ（collection: inquiries、電話番号は暗号化）"""

    def __init__(self, client: FirestoreClient, encryption_manager: Optional[EncryptionManager] = None):
        super().__init__(client, "inquiries", encryption_manager)

    def _entity_id(self, entity: Inquiry) -> str:
        return entity.id

    def _get_encrypted_fields(self) -> List[str]:
        return ["phone"]

    def _to_storage(self, entity: Inquiry) -> Dict[str, Any]:
        return entity.to_dict()

    def _from_storage(self, document_id: str, data: Dict[str, Any]) -> Inquiry:
        return Inquiry.from_dict(document_id, data)

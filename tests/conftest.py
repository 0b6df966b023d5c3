"""
Shared fixtures: a connected in-memory document store and settings
"""

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from ensemble.config import Settings
from ensemble.integrations.firestore_client import FirestoreConfig
from ensemble.integrations.memory_store import InMemoryFirestoreClient
from ensemble.models.repository import EncryptionManager, ProfileRepository


@pytest_asyncio.fixture
async def store():
    """Connected InMemoryFirestoreClient"""
    client = InMemoryFirestoreClient()
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
def encryption_manager():
    return EncryptionManager(Fernet.generate_key().decode())


@pytest.fixture
def profiles(store, encryption_manager):
    return ProfileRepository(store, encryption_manager)


@pytest.fixture
def settings():
    return Settings(
        firestore=FirestoreConfig(project_id="test-project"),
        proxy_target_url="https://upstream.example.com/hook",
        super_admin_emails=["root@example.edu"],
        admin_emails=["director@example.edu"],
        performer_emails=["cellist@example.edu"],
        log_level="DEBUG",
    )

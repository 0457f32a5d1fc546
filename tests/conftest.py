import uuid

import pytest
from mongomock_motor import AsyncMongoMockClient


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"talkora_{uuid.uuid4().hex[:8]}"]

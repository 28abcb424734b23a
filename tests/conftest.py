"""
Pytest configuration and shared fixtures.
"""

import pytest

from permablob.database import create_session_factory
from permablob.models import Job

from helpers import BATCHER, HASH_1, HASH_2, INBOX, MAINNET_DENEB_TIMESTAMP


@pytest.fixture
def sample_job() -> Job:
    return Job(
        transaction_hash="0x" + "ab" * 32,
        from_address=BATCHER,
        to_address=INBOX,
        block_number=19426600,
        block_hash="0x" + "cd" * 32,
        timestamp=MAINNET_DENEB_TIMESTAMP + 240,
        l2_source="base",
        blob_versioned_hashes=(HASH_1, HASH_2),
    )


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a fresh SQLite database."""
    return create_session_factory(tmp_path / "test.db")

"""Shared test fixtures for all test modules."""

import pytest

from arke_edit.models.config import ClientConfig, RetryConfig


IPFS_URL = "https://ipfs.test"
REPROCESS_URL = "https://reprocess.test"


@pytest.fixture
def retry_config():
    """Retry policy with the production defaults (sleeps are patched in tests)."""
    return RetryConfig()


@pytest.fixture
def client_config(retry_config):
    """Client configuration pointing at the simulated services."""
    return ClientConfig(
        ipfs_wrapper_url=IPFS_URL,
        reprocess_api_url=REPROCESS_URL,
        auth_token="test-token",
        retry=retry_config,
    )


@pytest.fixture
def entity_payload():
    """Entity JSON as returned by GET /entities/{pi} (version 3, tip T3)."""
    return {
        "pi": "E",
        "ver": 3,
        "ts": "2025-01-01T00:00:00Z",
        "manifest_cid": "T3",
        "components": {
            "description.md": "cid-desc",
            "pinax.json": "cid-pinax",
        },
        "children_pi": ["C1", "C2"],
        "parent_pi": "P",
    }

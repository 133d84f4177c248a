"""Factory for edit sessions sharing one client."""

from typing import Optional

import httpx

from arke_edit.models.config import ClientConfig
from arke_edit.models.edit import EditSessionConfig
from arke_edit.services.arke_client import ArkeClient
from arke_edit.services.edit_session import EditSession


class ArkeEditSDK:
    """
    Entry point: owns an ArkeClient and creates EditSessions.

    Example:
        >>> sdk = ArkeEditSDK(ClientConfig(
        ...     ipfs_wrapper_url="https://api.arke.institute",
        ...     reprocess_api_url="https://reprocess-api.arke.institute",
        ... ))
        >>> session = sdk.create_session("01KBGG1TEG2J0TXR1XKZ8T3TBP")
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = ArkeClient(config, transport=transport)

    @property
    def client(self) -> ArkeClient:
        """The underlying API client, for direct entity and reprocess calls."""
        return self._client

    def create_session(self, pi: str, config: Optional[EditSessionConfig] = None) -> EditSession:
        """Create a new, unloaded edit session for an entity."""
        return EditSession(self._client, pi, config)

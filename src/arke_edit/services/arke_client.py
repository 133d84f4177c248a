"""HTTP client for the Arke entity store and reprocess API."""

import asyncio
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from arke_edit.models.config import ClientConfig
from arke_edit.models.entity import Entity, EntityUpdate, EntityVersion, UploadedFile
from arke_edit.models.reprocess import ReprocessRequest, ReprocessResult, ReprocessStatus
from arke_edit.services.exceptions import (
    ArkeEditError,
    CASConflictError,
    EntityNotFoundError,
    RemoteError,
    ResponseDecodeError,
    ReprocessError,
)
from arke_edit.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar('T', bound=BaseModel)

_UPLOAD_RESPONSE = TypeAdapter(list[UploadedFile])


class ArkeClient:
    """
    Low-level client for Arke services.

    Writes follow a strict no-retry discipline: a version write is a
    compare-and-swap on the entity tip and a 409 surfaces as
    CASConflictError. Only status polling retries, with exponential
    backoff on 5xx responses and network failures.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Service endpoints, auth token and retry policy
            transport: Optional httpx transport (used by tests to simulate the services)
        """
        self.config = config
        self.timeout = httpx.Timeout(config.request_timeout, connect=10.0)
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a single request; network failures become RemoteError."""
        try:
            async with self._http() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(
                "arke_request_network_error",
                method=method,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RemoteError(f"Network error calling {url}: {e}", status_code=None) from e

    def _decode(self, response: httpx.Response, model: Type[T], what: str) -> T:
        try:
            return model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error(
                "arke_response_decode_failed",
                what=what,
                status_code=response.status_code,
                error=str(e),
            )
            raise ResponseDecodeError(
                f"Malformed {what} response: {e}",
                status_code=response.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Entity store
    # ------------------------------------------------------------------

    async def get_entity(self, pi: str) -> Entity:
        """
        Fetch an entity by PI.

        Raises:
            EntityNotFoundError: If the store reports 404
            RemoteError: On any other non-success response or network failure
        """
        url = f"{self.config.ipfs_base}/entities/{pi}"
        logger.debug("entity_fetch_started", pi=pi)

        response = await self._request("GET", url, headers=self._headers())

        if response.status_code == 404:
            raise EntityNotFoundError(pi)

        if not response.is_success:
            raise RemoteError(
                f"Failed to fetch entity: {response.reason_phrase}",
                status_code=response.status_code,
                details={"pi": pi},
            )

        entity = self._decode(response, Entity, "entity")
        logger.debug("entity_fetch_completed", pi=pi, ver=entity.ver, tip=entity.manifest_cid)
        return entity

    async def get_content(self, cid: str) -> str:
        """
        Fetch raw component content by CID.

        Raises:
            EntityNotFoundError: If the store reports 404 for the CID
            RemoteError: On any other non-success response or network failure
        """
        url = f"{self.config.ipfs_base}/cat/{cid}"
        response = await self._request("GET", url, headers=self._headers())

        if response.status_code == 404:
            raise EntityNotFoundError(cid)

        if not response.is_success:
            raise RemoteError(
                f"Failed to fetch content: {response.reason_phrase}",
                status_code=response.status_code,
                details={"cid": cid},
            )

        return response.text

    async def upload_content(self, content: str, filename: str) -> str:
        """
        Upload content and return the CID assigned by the store.

        Identical content always yields the same CID.

        Raises:
            RemoteError: On non-success response or network failure
            ResponseDecodeError: If the response is not a non-empty upload list
        """
        url = f"{self.config.ipfs_base}/upload"
        files = {"file": (filename, content.encode("utf-8"), "text/plain")}

        response = await self._request(
            "POST", url, headers=self._headers(json_body=False), files=files
        )

        if not response.is_success:
            raise RemoteError(
                f"Failed to upload content: {response.reason_phrase}",
                status_code=response.status_code,
                details={"filename": filename},
            )

        try:
            uploaded = _UPLOAD_RESPONSE.validate_python(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ResponseDecodeError(
                f"Malformed upload response: {e}", status_code=response.status_code
            ) from e

        if not uploaded:
            raise ResponseDecodeError(
                "Upload response contained no files", status_code=response.status_code
            )

        logger.info("content_uploaded", filename=filename, cid=uploaded[0].cid, size=len(content))
        return uploaded[0].cid

    async def update_entity(self, pi: str, update: EntityUpdate) -> EntityVersion:
        """
        Write a new entity version (compare-and-swap on the tip).

        Never retried: a blind retry could clobber an intervening write or
        apply the same edit twice.

        Raises:
            CASConflictError: If the entity's tip is no longer update.expect_tip
            RemoteError: On any other non-success response or network failure
        """
        url = f"{self.config.ipfs_base}/entities/{pi}/versions"
        payload = update.model_dump(exclude_none=True)

        logger.info(
            "entity_update_started",
            pi=pi,
            expect_tip=update.expect_tip,
            components=sorted((update.components or {}).keys()),
        )
        logger.debug("entity_update_payload", pi=pi, payload=payload)

        response = await self._request("POST", url, headers=self._headers(), json=payload)

        if response.status_code == 409:
            actual_tip = await self._conflict_tip(pi, response)
            logger.error(
                "entity_update_conflict",
                pi=pi,
                expected_tip=update.expect_tip,
                actual_tip=actual_tip,
            )
            raise CASConflictError(pi, update.expect_tip, actual_tip)

        if not response.is_success:
            raise RemoteError(
                f"Failed to update entity: {response.reason_phrase}",
                status_code=response.status_code,
                details={"pi": pi},
            )

        version = self._decode(response, EntityVersion, "entity version")
        logger.info("entity_update_completed", pi=pi, ver=version.ver, tip=version.tip)
        return version

    async def _conflict_tip(self, pi: str, response: httpx.Response) -> Optional[str]:
        """Current tip after a 409, read from the entity store.

        If the re-read fails, falls back to the tip in the 409 body (or None).
        """
        try:
            return (await self.get_entity(pi)).manifest_cid
        except ArkeEditError as e:
            logger.warning(
                "entity_conflict_tip_lookup_failed",
                pi=pi,
                code=e.code,
                error=e.message,
            )

        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            tip = body.get("actual_tip") or body.get("tip")
            if isinstance(tip, str):
                return tip
        return None

    # ------------------------------------------------------------------
    # Reprocess API
    # ------------------------------------------------------------------

    async def reprocess(self, request: ReprocessRequest) -> ReprocessResult:
        """
        Trigger regeneration for an entity.

        Raises:
            ReprocessError: If the API rejects the request (message taken from the body when possible)
            RemoteError: On network failure
        """
        url = f"{self.config.reprocess_base}/api/reprocess"
        payload = request.to_payload()

        logger.info(
            "reprocess_request_started",
            pi=request.pi,
            phases=payload["phases"],
            cascade=request.cascade,
        )
        logger.debug("reprocess_request_payload", payload=payload)

        response = await self._request("POST", url, headers=self._headers(), json=payload)

        if not response.is_success:
            message = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error")
            except ValueError:
                pass

            logger.error(
                "reprocess_request_failed",
                pi=request.pi,
                status_code=response.status_code,
                message=message,
            )
            raise ReprocessError(message or f"Reprocess failed: {response.reason_phrase}")

        result = self._decode(response, ReprocessResult, "reprocess")
        logger.info(
            "reprocess_request_completed",
            pi=request.pi,
            batch_id=result.batch_id,
            entities_queued=result.entities_queued,
        )
        return result

    async def get_reprocess_status(
        self,
        status_url: str,
        is_first_poll: bool = False,
    ) -> ReprocessStatus:
        """
        Fetch reprocessing status, retrying transient failures.

        5xx responses and network errors are retried with exponential
        backoff; the orchestrator often returns 500 while it initializes.
        Other failures are raised immediately.

        Args:
            status_url: Status URL returned by reprocess()
            is_first_poll: Use the longer warmup delay before the first retry

        Raises:
            RemoteError: On a non-retryable failure or once retries are exhausted
        """
        retry = self.config.retry
        transform = self.config.status_url_transform
        fetch_url = transform(status_url) if transform else status_url

        delay = retry.initial_delay_for(is_first_poll)
        response: Optional[httpx.Response] = None

        async with self._http() as client:
            for attempt in range(retry.max_retries + 1):
                try:
                    response = await client.get(fetch_url, headers=self._headers())
                except httpx.TransportError as e:
                    if attempt >= retry.max_retries:
                        logger.error(
                            "status_poll_failed",
                            url=fetch_url,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise RemoteError(
                            f"Failed to fetch reprocess status after {attempt + 1} attempts: {e}",
                            status_code=None,
                        ) from e

                    logger.warning(
                        "status_poll_retry",
                        url=fetch_url,
                        attempt=attempt + 1,
                        max_retries=retry.max_retries,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * retry.backoff_multiplier, retry.max_delay)
                    continue

                if response.status_code >= 500 and attempt < retry.max_retries:
                    logger.warning(
                        "status_poll_retry",
                        url=fetch_url,
                        attempt=attempt + 1,
                        max_retries=retry.max_retries,
                        status_code=response.status_code,
                        retry_delay=delay,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * retry.backoff_multiplier, retry.max_delay)
                    continue

                break

        if not response.is_success:
            logger.error(
                "status_poll_failed",
                url=fetch_url,
                status_code=response.status_code,
            )
            raise RemoteError(
                f"Failed to fetch reprocess status: {response.reason_phrase}",
                status_code=response.status_code,
            )

        status = self._decode(response, ReprocessStatus, "reprocess status")
        logger.debug(
            "status_poll_completed",
            batch_id=status.batch_id,
            status=status.status.value,
        )
        return status

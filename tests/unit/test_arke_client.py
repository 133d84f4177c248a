"""Unit tests for ArkeClient."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from arke_edit.models.config import ClientConfig, RetryConfig
from arke_edit.models.entity import EntityUpdate
from arke_edit.models.reprocess import (
    CustomPrompts,
    ReprocessOptions,
    ReprocessPhase,
    ReprocessRequest,
)
from arke_edit.services.arke_client import ArkeClient
from arke_edit.services.exceptions import (
    CASConflictError,
    EntityNotFoundError,
    RemoteError,
    ReprocessError,
    ResponseDecodeError,
)


STATUS_URL = "https://orchestrator.test/status/batch-1"

STATUS_PAYLOAD = {
    "batch_id": "batch-1",
    "status": "DONE",
    "progress": {
        "directories_total": 1,
        "directories_pinax_complete": 0,
        "directories_cheimarros_complete": 0,
        "directories_description_complete": 1,
    },
}


def make_client(config, handler):
    """Create a client whose requests are answered by handler."""
    return ArkeClient(config, transport=httpx.MockTransport(handler))


def status_sequence(codes, calls):
    """Handler answering status polls with the given status codes in order."""
    codes = list(codes)

    def handler(request):
        calls.append(str(request.url))
        code = codes.pop(0)
        if code == 200:
            return httpx.Response(200, json=STATUS_PAYLOAD)
        return httpx.Response(code, text="unavailable")

    return handler


def slept(sleep_mock):
    return [c.args[0] for c in sleep_mock.await_args_list]


class TestEntityStore:
    """Tests for entity store operations."""

    @pytest.mark.asyncio
    async def test_get_entity(self, client_config, entity_payload):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=entity_payload)

        client = make_client(client_config, handler)
        entity = await client.get_entity("E")

        assert entity.pi == "E"
        assert entity.ver == 3
        assert entity.tip == "T3"
        assert entity.components["description.md"] == "cid-desc"
        assert str(seen[0].url) == "https://ipfs.test/entities/E"
        assert seen[0].headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, entity_payload):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=entity_payload)

        config = ClientConfig(ipfs_wrapper_url="https://ipfs.test/", reprocess_api_url="https://r.test")
        await make_client(config, handler).get_entity("E")

        assert "Authorization" not in seen[0].headers
        assert str(seen[0].url) == "https://ipfs.test/entities/E"

    @pytest.mark.asyncio
    async def test_get_entity_not_found(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(404))

        with pytest.raises(EntityNotFoundError) as exc_info:
            await client.get_entity("missing")

        assert exc_info.value.pi == "missing"
        assert exc_info.value.code == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_get_entity_server_error(self, client_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(client_config, handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.get_entity("E")

        assert exc_info.value.status_code == 503
        assert len(calls) == 1  # never retried

    @pytest.mark.asyncio
    async def test_get_entity_malformed_body(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(200, text="not json"))

        with pytest.raises(ResponseDecodeError):
            await client.get_entity("E")

    @pytest.mark.asyncio
    async def test_get_entity_wrong_shape(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(200, json={"pi": "E"}))

        with pytest.raises(ResponseDecodeError) as exc_info:
            await client.get_entity("E")

        assert isinstance(exc_info.value, RemoteError)

    @pytest.mark.asyncio
    async def test_get_entity_undecodable_body(self, client_config):
        client = make_client(
            client_config, lambda r: httpx.Response(200, content=b'{"pi": "\xff"}')
        )

        with pytest.raises(ResponseDecodeError):
            await client.get_entity("E")

    @pytest.mark.asyncio
    async def test_upload_undecodable_body(self, client_config):
        client = make_client(
            client_config, lambda r: httpx.Response(200, content=b'[{"cid": "\xff"}]')
        )

        with pytest.raises(ResponseDecodeError):
            await client.upload_content("x", "x.md")

    @pytest.mark.asyncio
    async def test_network_error_becomes_remote_error(self, client_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(client_config, handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.get_entity("E")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_get_content(self, client_config):
        def handler(request):
            assert request.url.path == "/cat/cid-desc"
            return httpx.Response(200, text="A description")

        client = make_client(client_config, handler)

        assert await client.get_content("cid-desc") == "A description"

    @pytest.mark.asyncio
    async def test_get_content_error(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(500))

        with pytest.raises(RemoteError) as exc_info:
            await client.get_content("cid-desc")

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_upload_content(self, client_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"cid": "cid-new", "name": "description.md", "size": 11}])

        client = make_client(client_config, handler)
        cid = await client.upload_content("New content", "description.md")

        assert cid == "cid-new"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/upload"
        assert b'filename="description.md"' in seen[0].content
        assert b"New content" in seen[0].content
        assert seen[0].headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_upload_empty_response(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(200, json=[]))

        with pytest.raises(ResponseDecodeError):
            await client.upload_content("x", "x.md")

    @pytest.mark.asyncio
    async def test_upload_failure(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(413))

        with pytest.raises(RemoteError) as exc_info:
            await client.upload_content("x", "x.md")

        assert exc_info.value.status_code == 413


class TestUpdateEntity:
    """Tests for compare-and-swap version writes."""

    @pytest.mark.asyncio
    async def test_update_success(self, client_config):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"pi": "E", "tip": "T4", "ver": 4})

        client = make_client(client_config, handler)
        version = await client.update_entity("E", EntityUpdate(
            expect_tip="T3",
            components={"description.md": "cid-new"},
            note="Fix typo",
        ))

        assert version.tip == "T4"
        assert version.ver == 4
        assert bodies == [{
            "expect_tip": "T3",
            "components": {"description.md": "cid-new"},
            "note": "Fix typo",
        }]

    @pytest.mark.asyncio
    async def test_conflict_raises_cas_error_with_actual_tip(self, client_config, entity_payload):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            if request.method == "POST":
                return httpx.Response(409, json={"error": "tip mismatch"})
            return httpx.Response(200, json={**entity_payload, "ver": 5, "manifest_cid": "T5"})

        client = make_client(client_config, handler)

        with pytest.raises(CASConflictError) as exc_info:
            await client.update_entity("E", EntityUpdate(expect_tip="T3", components={}, note="n"))

        assert exc_info.value.expected_tip == "T3"
        assert exc_info.value.actual_tip == "T5"
        assert exc_info.value.code == "CAS_CONFLICT"
        # The write itself is not retried
        assert calls == [("POST", "/entities/E/versions"), ("GET", "/entities/E")]

    @pytest.mark.asyncio
    async def test_other_failure_is_remote_error(self, client_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = make_client(client_config, handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.update_entity("E", EntityUpdate(expect_tip="T3", note="n"))

        assert exc_info.value.status_code == 500
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_conflict_survives_failed_tip_lookup(self, client_config):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            if request.method == "POST":
                return httpx.Response(409, json={"error": "tip mismatch", "actual_tip": "T5"})
            return httpx.Response(503)

        client = make_client(client_config, handler)

        with pytest.raises(CASConflictError) as exc_info:
            await client.update_entity("E", EntityUpdate(expect_tip="T3", note="n"))

        assert exc_info.value.expected_tip == "T3"
        assert exc_info.value.actual_tip == "T5"
        assert calls == [("POST", "/entities/E/versions"), ("GET", "/entities/E")]

    @pytest.mark.asyncio
    async def test_conflict_with_unknown_actual_tip(self, client_config):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(409, text="Conflict")
            raise httpx.ConnectError("connection reset", request=request)

        client = make_client(client_config, handler)

        with pytest.raises(CASConflictError) as exc_info:
            await client.update_entity("E", EntityUpdate(expect_tip="T3", note="n"))

        assert exc_info.value.actual_tip is None
        assert exc_info.value.details["actual_tip"] is None


class TestReprocess:
    """Tests for triggering regeneration."""

    @pytest.mark.asyncio
    async def test_reprocess_payload(self, client_config):
        bodies = []

        def handler(request):
            assert str(request.url) == "https://reprocess.test/api/reprocess"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={
                "batch_id": "batch-1",
                "entities_queued": 2,
                "entity_pis": ["E", "P"],
                "status_url": STATUS_URL,
            })

        client = make_client(client_config, handler)
        result = await client.reprocess(ReprocessRequest(
            pi="E",
            phases=["description"],
            cascade=True,
            options=ReprocessOptions(
                stop_at_pi="ROOT",
                custom_prompts=CustomPrompts(general="Be brief"),
            ),
        ))

        assert result.batch_id == "batch-1"
        assert result.entity_pis == ["E", "P"]
        assert result.status_url == STATUS_URL
        assert bodies == [{
            "pi": "E",
            "phases": ["description"],
            "cascade": True,
            "options": {"stop_at_pi": "ROOT", "custom_prompts": {"general": "Be brief"}},
        }]

    @pytest.mark.asyncio
    async def test_reprocess_error_message_from_body(self, client_config):
        client = make_client(
            client_config, lambda r: httpx.Response(400, json={"message": "Unknown phase"})
        )

        with pytest.raises(ReprocessError, match="Unknown phase"):
            await client.reprocess(ReprocessRequest(pi="E", phases=["pinax"]))

    @pytest.mark.asyncio
    async def test_reprocess_error_without_body(self, client_config):
        client = make_client(client_config, lambda r: httpx.Response(500, text="<html>"))

        with pytest.raises(ReprocessError, match="Reprocess failed: Internal Server Error"):
            await client.reprocess(ReprocessRequest(pi="E", phases=["pinax"]))

    @pytest.mark.asyncio
    async def test_reprocess_error_with_undecodable_body(self, client_config):
        client = make_client(
            client_config, lambda r: httpx.Response(500, content=b'{"message": "\xff"}')
        )

        with pytest.raises(ReprocessError, match="Reprocess failed: Internal Server Error"):
            await client.reprocess(ReprocessRequest(pi="E", phases=["pinax"]))


class TestReprocessStatus:
    """Tests for status polling with retry."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, client_config):
        calls = []
        client = make_client(client_config, status_sequence([200], calls))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            status = await client.get_reprocess_status(STATUS_URL)

        assert status.status == ReprocessPhase.DONE
        assert status.progress.directories_description_complete == 1
        assert len(calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self, client_config):
        calls = []
        client = make_client(client_config, status_sequence([500, 500, 500, 500, 200], calls))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            status = await client.get_reprocess_status(STATUS_URL)

        assert status.batch_id == "batch-1"
        assert len(calls) == 5
        assert slept(sleep) == [2.0, 4.0, 8.0, 16.0]

    @pytest.mark.asyncio
    async def test_first_poll_uses_warmup_delay(self, client_config):
        calls = []
        client = make_client(client_config, status_sequence([502, 500, 200], calls))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            await client.get_reprocess_status(STATUS_URL, is_first_poll=True)

        assert slept(sleep) == [3.0, 6.0]

    @pytest.mark.asyncio
    async def test_backoff_capped_and_exhausted(self):
        config = ClientConfig(
            ipfs_wrapper_url="https://ipfs.test",
            reprocess_api_url="https://reprocess.test",
            retry=RetryConfig(initial_delay=8.0, first_poll_initial_delay=8.0, max_delay=20.0),
        )
        calls = []
        client = make_client(config, status_sequence([500] * 6, calls))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RemoteError) as exc_info:
                await client.get_reprocess_status(STATUS_URL)

        assert exc_info.value.status_code == 500
        assert len(calls) == 6
        assert slept(sleep) == [8.0, 16.0, 20.0, 20.0, 20.0]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client_config):
        calls = []
        client = make_client(client_config, status_sequence([404], calls))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RemoteError) as exc_info:
                await client.get_reprocess_status(STATUS_URL)

        assert exc_info.value.status_code == 404
        assert len(calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_errors_retried(self, client_config):
        attempts = [0]

        def handler(request):
            attempts[0] += 1
            if attempts[0] <= 2:
                raise httpx.ReadTimeout("timeout", request=request)
            return httpx.Response(200, json=STATUS_PAYLOAD)

        client = make_client(client_config, handler)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            status = await client.get_reprocess_status(STATUS_URL)

        assert status.status == ReprocessPhase.DONE
        assert attempts[0] == 3
        assert slept(sleep) == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_network_errors_exhausted(self):
        config = ClientConfig(
            ipfs_wrapper_url="https://ipfs.test",
            reprocess_api_url="https://reprocess.test",
            retry=RetryConfig(max_retries=2, initial_delay=0.0, first_poll_initial_delay=0.0, max_delay=0.0),
        )

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(config, handler)

        with pytest.raises(RemoteError) as exc_info:
            await client.get_reprocess_status(STATUS_URL)

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_status_url_transform_applied_to_every_attempt(self, retry_config):
        config = ClientConfig(
            ipfs_wrapper_url="https://ipfs.test",
            reprocess_api_url="https://reprocess.test",
            retry=retry_config,
            status_url_transform=lambda url: url.replace(
                "https://orchestrator.test", "https://proxy.test/orchestrator"
            ),
        )
        calls = []
        client = make_client(config, status_sequence([500, 500, 200], calls))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await client.get_reprocess_status(STATUS_URL)

        assert calls == ["https://proxy.test/orchestrator/status/batch-1"] * 3

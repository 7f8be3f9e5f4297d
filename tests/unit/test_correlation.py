"""
Unit tests for per-connection log context.

Each connection handler task must carry its own correlation ID, connection
ID and device ID.
"""

import asyncio
import contextvars

import pytest

from track_gateway.correlation import (
    bind_connection,
    bind_device,
    connection_fields,
    correlation_context,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


class TestGenerateCorrelationId:
    """Tests for generate_correlation_id"""

    def test_uuid_hex(self):
        """Test that IDs are 32 lowercase hex characters"""
        corr_id = generate_correlation_id()

        assert len(corr_id) == 32
        assert all(c in "0123456789abcdef" for c in corr_id)

    def test_unique(self):
        """Test that repeated calls give distinct IDs"""
        assert len({generate_correlation_id() for _ in range(20)}) == 20


class TestCorrelationContext:
    """Tests for correlation_context"""

    def test_auto_generates_and_restores(self):
        """Test that a generated ID is visible inside and gone after exit"""
        with correlation_context() as corr_id:
            assert corr_id is not None
            assert get_correlation_id() == corr_id

        assert get_correlation_id() is None

    def test_explicit_id(self):
        """Test that a given ID is used verbatim"""
        with correlation_context("conn-10.0.0.5") as corr_id:
            assert corr_id == "conn-10.0.0.5"

    def test_nested(self):
        """Test that nested scopes restore the outer ID"""
        with correlation_context("outer"):
            with correlation_context("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"


class TestEnsureCorrelationId:
    """Tests for ensure_correlation_id"""

    def test_creates_when_missing(self):
        """Test that a missing ID is created and stored"""
        corr_id = ensure_correlation_id()

        assert get_correlation_id() == corr_id

    def test_keeps_existing(self):
        """Test that an existing ID is returned unchanged"""
        set_correlation_id("existing")

        assert ensure_correlation_id() == "existing"

    @pytest.mark.asyncio
    async def test_tasks_get_separate_ids(self):
        """Test that each connection task gets its own ID without leaking to the parent"""

        async def handler() -> str:
            corr_id = ensure_correlation_id()
            await asyncio.sleep(0)
            assert get_correlation_id() == corr_id
            return corr_id

        ids = await asyncio.gather(*(asyncio.create_task(handler()) for _ in range(5)))

        assert len(set(ids)) == 5
        assert get_correlation_id() is None


class TestConnectionBinding:
    """Tests for bind_connection, bind_device and connection_fields"""

    def test_nothing_bound(self):
        """Test that a fresh context has no connection fields"""
        assert contextvars.Context().run(connection_fields) == {}

    def test_bind_connection_then_device(self):
        """Test that the connection id is bound first and the device id joins on identification"""

        def handler() -> tuple[str, dict[str, str], dict[str, str]]:
            corr_id = bind_connection("10.0.0.5:40123")
            before = connection_fields()
            bind_device("865585040014007")
            return corr_id, before, connection_fields()

        corr_id, before, after = contextvars.Context().run(handler)

        assert len(corr_id) == 32
        assert before == {"connection_id": "10.0.0.5:40123"}
        assert after == {"connection_id": "10.0.0.5:40123", "device_id": "865585040014007"}

    def test_bind_connection_clears_inherited_device(self):
        """Test that a new connection does not inherit a device id from the copied context"""

        def new_connection() -> dict[str, str]:
            _ = bind_connection("10.0.0.6:50000")
            return connection_fields()

        def listener() -> dict[str, str]:
            bind_device("865585040014007")
            return contextvars.copy_context().run(new_connection)

        assert contextvars.Context().run(listener) == {"connection_id": "10.0.0.6:50000"}

    @pytest.mark.asyncio
    async def test_tasks_keep_their_own_connection(self):
        """Test that concurrent connection tasks log under their own ids"""

        async def handler(connection_id: str, device_id: str) -> dict[str, str]:
            _ = bind_connection(connection_id)
            await asyncio.sleep(0)
            bind_device(device_id)
            await asyncio.sleep(0)
            return connection_fields()

        first, second = await asyncio.gather(
            asyncio.create_task(handler("10.0.0.5:1", "865585040014007")),
            asyncio.create_task(handler("10.0.0.6:2", "865585040014008")),
        )

        assert first == {"connection_id": "10.0.0.5:1", "device_id": "865585040014007"}
        assert second == {"connection_id": "10.0.0.6:2", "device_id": "865585040014008"}
        assert connection_fields() == {}

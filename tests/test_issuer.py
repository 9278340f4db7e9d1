"""
Tests for the authorization URL issuer.
"""

import pytest
from unittest.mock import AsyncMock

from connectors.errors import MissingExternalUrl, ProviderNotAllowed
from connectors.issuer import AuthorizationUrlIssuer
from connectors.providers.mastodon import MastodonProvider
from connectors.schemas import AuthUrl


@pytest.fixture
def issuer(registry, store):
    return AuthorizationUrlIssuer(registry, store, state_ttl_seconds=300)


class TestIssueAuthorizationUrl:
    @pytest.mark.asyncio
    async def test_stores_state(self, issuer, store):
        result = await issuer.issue_authorization_url("fake")

        assert result.url == "https://fake.example/authorize?state=state-1"
        assert result.failed is False
        stored = await store.get("state-1")
        assert stored.code_verifier == "verifier-1"
        assert stored.reconnect_target is None
        assert stored.external_context is None

    @pytest.mark.asyncio
    async def test_state_lives_for_ttl(self, issuer, store, clock):
        await issuer.issue_authorization_url("fake")
        clock.advance(299)
        assert await store.get("state-1") is not None
        clock.advance(2)
        assert await store.get("state-1") is None

    @pytest.mark.asyncio
    async def test_refresh_target_recorded(self, issuer, store):
        await issuer.issue_authorization_url("fake", refresh_target="acct-1")
        assert (await store.get("state-1")).reconnect_target == "acct-1"

    @pytest.mark.asyncio
    async def test_not_allowed(self, issuer, store):
        with pytest.raises(ProviderNotAllowed):
            await issuer.issue_authorization_url("unknown")

    @pytest.mark.asyncio
    async def test_generation_failure_is_soft(self, issuer, provider, store):
        provider.generate_auth_url = AsyncMock(side_effect=RuntimeError("boom"))
        result = await issuer.issue_authorization_url("fake")
        assert result.failed is True
        assert result.message == "boom"
        assert result.url is None


class TestExternalContext:
    @pytest.fixture
    def mastodon(self, registry):
        provider = MastodonProvider()
        provider.resolve_external_context = AsyncMock(
            return_value={"client_id": "cid", "client_secret": "sec"}
        )
        provider.generate_auth_url = AsyncMock(
            return_value=AuthUrl(url="https://social.example/oauth/authorize", state="m-state")
        )
        registry.register(provider)
        return provider

    @pytest.mark.asyncio
    async def test_missing_url(self, issuer, mastodon):
        with pytest.raises(MissingExternalUrl):
            await issuer.issue_authorization_url("mastodon")
        mastodon.resolve_external_context.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_context_stored_with_state(self, issuer, mastodon, store):
        result = await issuer.issue_authorization_url(
            "mastodon", external_url="https://social.example"
        )
        assert result.url == "https://social.example/oauth/authorize"
        stored = await store.get("m-state")
        assert stored.external_context == {
            "client_id": "cid",
            "client_secret": "sec",
            "instance_url": "https://social.example",
        }
        mastodon.generate_auth_url.assert_awaited_once_with(stored.external_context)

    @pytest.mark.asyncio
    async def test_app_registration_failure_is_soft(self, issuer, mastodon, store):
        mastodon.resolve_external_context.side_effect = RuntimeError("instance unreachable")
        result = await issuer.issue_authorization_url(
            "mastodon", external_url="https://social.example"
        )
        assert result.failed is True
        assert await store.get("m-state") is None

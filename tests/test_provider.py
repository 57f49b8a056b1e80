"""Tests for the identity provider client."""

import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from storefront_auth.discovery import DiscoveryCache, EndpointResolver
from storefront_auth.errors import ExchangeFailedError, IdentityLookupError
from storefront_auth.pkce import PKCEGenerator
from storefront_auth.provider import IdentityProviderClient
from storefront_auth.urls import append_query

from tests.mocks.storefront_auth_mocks import (
    AUTHORIZE_ENDPOINT,
    GRAPHQL_ENDPOINT,
    SITE_URL,
    TOKEN_ENDPOINT,
    MockIdentityProvider,
    make_config,
)


def make_client(provider, **config_overrides):
    config = make_config(**config_overrides)
    cache = DiscoveryCache()
    http_client = provider.client()
    return IdentityProviderClient(config, http_client, EndpointResolver(config, http_client, cache), cache)


def issue_code(provider, config, verifier):
    authorize_url = append_query(
        AUTHORIZE_ENDPOINT,
        {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "code_challenge": PKCEGenerator.derive_challenge(verifier),
            "state": "state-value",
        },
    )
    code, _ = provider.authorize(authorize_url)
    return code


def token_requests(provider):
    return [r for r in provider.requests if str(r.url) == TOKEN_ENDPOINT]


class TestExchangeCode:
    """Test authorization code exchange."""

    @pytest.mark.asyncio
    async def test_successful_exchange(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        verifier = PKCEGenerator.generate_verifier()
        code = issue_code(provider, client.config, verifier)

        tokens = await client.exchange_code(code, verifier)

        assert tokens.access_token in provider.access_tokens
        assert tokens.refresh_token in provider.refresh_tokens
        assert tokens.id_token is not None
        assert tokens.expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)

    @pytest.mark.asyncio
    async def test_exchange_form_body(self):
        """Test the request carries the authorization_code grant fields."""
        provider = MockIdentityProvider()
        client = make_client(provider)
        verifier = PKCEGenerator.generate_verifier()
        code = issue_code(provider, client.config, verifier)

        await client.exchange_code(code, verifier)

        form = provider.exchange_calls[0]
        assert form == {
            "grant_type": "authorization_code",
            "client_id": "test-client-id",
            "redirect_uri": f"{SITE_URL}/auth/callback",
            "code": code,
            "code_verifier": verifier,
        }

    @pytest.mark.asyncio
    async def test_public_client_sends_no_authorization_header(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        verifier = PKCEGenerator.generate_verifier()

        await client.exchange_code(issue_code(provider, client.config, verifier), verifier)

        assert "authorization" not in token_requests(provider)[0].headers

    @pytest.mark.asyncio
    async def test_confidential_client_uses_basic_auth(self):
        provider = MockIdentityProvider()
        client = make_client(provider, client_secret="s3cret")
        verifier = PKCEGenerator.generate_verifier()

        await client.exchange_code(issue_code(provider, client.config, verifier), verifier)

        request = token_requests(provider)[0]
        expected = base64.b64encode(b"test-client-id:s3cret").decode()
        assert request.headers["authorization"] == f"Basic {expected}"
        assert "client_secret" not in parse_qs(request.content.decode())

    @pytest.mark.asyncio
    async def test_wrong_verifier_surfaces_provider_error(self):
        """Test a PKCE mismatch surfaces the provider's code and description."""
        provider = MockIdentityProvider()
        client = make_client(provider)
        code = issue_code(provider, client.config, PKCEGenerator.generate_verifier())

        with pytest.raises(ExchangeFailedError) as exc_info:
            await client.exchange_code(code, PKCEGenerator.generate_verifier())

        assert exc_info.value.provider_code == "invalid_grant"
        assert exc_info.value.error_description == "PKCE check failed"
        assert exc_info.value.status_code == 400
        assert not exc_info.value.transient

    @pytest.mark.asyncio
    async def test_code_is_single_use(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        verifier = PKCEGenerator.generate_verifier()
        code = issue_code(provider, client.config, verifier)

        await client.exchange_code(code, verifier)
        with pytest.raises(ExchangeFailedError):
            await client.exchange_code(code, verifier)

    @pytest.mark.asyncio
    async def test_exchange_is_not_retried(self):
        """Test a transport failure during exchange is reported, not retried."""
        provider = MockIdentityProvider()
        provider.token_transport_failures = 1
        client = make_client(provider)
        verifier = PKCEGenerator.generate_verifier()
        code = issue_code(provider, client.config, verifier)

        with pytest.raises(ExchangeFailedError) as exc_info:
            await client.exchange_code(code, verifier)

        assert exc_info.value.transient
        assert exc_info.value.error_description == "The identity provider could not be reached"
        assert "ConnectError" not in exc_info.value.error_description
        assert len(provider.exchange_calls) == 1

    @pytest.mark.asyncio
    async def test_server_error(self):
        provider = MockIdentityProvider()
        provider.token_status = 502
        client = make_client(provider)

        with pytest.raises(ExchangeFailedError) as exc_info:
            await client.exchange_code("code", "v" * 43)

        assert exc_info.value.provider_code == "server_error"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_response_without_access_token(self):
        def handler(request):
            if request.url.path.endswith("openid-configuration"):
                return httpx.Response(404)
            return httpx.Response(200, json={"token_type": "Bearer"})

        config = make_config()
        cache = DiscoveryCache()
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = IdentityProviderClient(config, http_client, EndpointResolver(config, http_client, cache), cache)

        with pytest.raises(ExchangeFailedError, match="no access token"):
            await client.exchange_code("code", "v" * 43)


class TestRefresh:
    """Test access token refresh."""

    @pytest.mark.asyncio
    async def test_successful_refresh(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        original = provider.issue_tokens()

        tokens = await client.refresh(original["refresh_token"])

        assert tokens.access_token != original["access_token"]
        assert provider.refresh_calls[0]["refresh_token"] == original["refresh_token"]

    @pytest.mark.asyncio
    async def test_previous_refresh_token_kept_when_not_rotated(self):
        """Test a response without a new refresh token keeps the old one."""
        provider = MockIdentityProvider()
        provider.rotate_refresh_tokens = False
        client = make_client(provider)
        original = provider.issue_tokens()

        tokens = await client.refresh(original["refresh_token"])

        assert tokens.refresh_token == original["refresh_token"]

    @pytest.mark.asyncio
    async def test_transport_failure_retried_once(self):
        provider = MockIdentityProvider()
        provider.token_transport_failures = 1
        client = make_client(provider)
        original = provider.issue_tokens()

        tokens = await client.refresh(original["refresh_token"])

        assert tokens.access_token in provider.access_tokens
        assert len(provider.refresh_calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_transport_failure_gives_up(self):
        provider = MockIdentityProvider()
        provider.token_transport_failures = 5
        client = make_client(provider)

        with pytest.raises(ExchangeFailedError) as exc_info:
            await client.refresh("refresh-token")

        assert exc_info.value.transient
        assert len(provider.refresh_calls) == 2

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self):
        """Test a provider rejection is final."""
        provider = MockIdentityProvider()
        client = make_client(provider)

        with pytest.raises(ExchangeFailedError) as exc_info:
            await client.refresh("revoked-refresh-token")

        assert exc_info.value.provider_code == "invalid_grant"
        assert len(provider.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_empty_refresh_token(self):
        provider = MockIdentityProvider()
        client = make_client(provider)

        with pytest.raises(ExchangeFailedError):
            await client.refresh("")
        assert provider.requests == []


class TestCustomerLookup:
    """Test Customer Account API discovery and the customer query."""

    @pytest.mark.asyncio
    async def test_fetch_customer(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        access_token = provider.issue_tokens()["access_token"]

        customer = await client.fetch_customer(access_token)

        assert customer.id == "gid://shopify/Customer/1"
        assert customer.email == "ada@example.com"
        assert customer.first_name == "Ada"
        assert customer.phone is None

    @pytest.mark.asyncio
    async def test_customer_request_headers(self):
        provider = MockIdentityProvider()
        client = make_client(provider)
        access_token = provider.issue_tokens()["access_token"]

        await client.fetch_customer(access_token)

        request = provider.customer_calls[0]
        assert request.headers["authorization"] == access_token
        assert request.headers["origin"] == SITE_URL
        assert request.headers["user-agent"] == client.config.user_agent

    @pytest.mark.asyncio
    async def test_customer_api_endpoint_is_cached(self):
        provider = MockIdentityProvider()
        client = make_client(provider)

        assert await client.customer_api_endpoint() == GRAPHQL_ENDPOINT
        await client.customer_api_endpoint()

        discovery = [r for r in provider.requests if r.url.path.endswith("customer-account-api")]
        assert len(discovery) == 1

    @pytest.mark.asyncio
    async def test_customer_api_fallback(self):
        provider = MockIdentityProvider()
        provider.customer_api_document = None
        client = make_client(provider, api_version="2025-10")

        endpoint = await client.customer_api_endpoint()

        assert endpoint == "https://shop.example.com/customer/api/2025-10/graphql"

    @pytest.mark.asyncio
    async def test_customer_api_tries_account_domain(self):
        """Test the account domain is consulted after the shop domain."""
        provider = MockIdentityProvider()
        provider.customer_api_document = None
        client = make_client(
            provider,
            authorize_endpoint="https://account.example.com/authentication/oauth/authorize",
            token_endpoint=TOKEN_ENDPOINT,
            logout_endpoint="https://account.example.com/logout",
        )

        endpoint = await client.customer_api_endpoint()

        hosts = [r.url.host for r in provider.requests]
        assert hosts == ["shop.example.com", "account.example.com"]
        assert endpoint == "https://account.example.com/customer/api/2026-01/graphql"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        provider = MockIdentityProvider()
        client = make_client(provider)

        with pytest.raises(IdentityLookupError) as exc_info:
            await client.fetch_customer("unknown-token")

        assert exc_info.value.auth_rejected

    @pytest.mark.asyncio
    async def test_server_error_is_not_auth_rejection(self):
        provider = MockIdentityProvider()
        provider.customer_status = 503
        client = make_client(provider)

        with pytest.raises(IdentityLookupError) as exc_info:
            await client.fetch_customer(provider.issue_tokens()["access_token"])

        assert not exc_info.value.auth_rejected

    @pytest.mark.asyncio
    async def test_transport_error_is_not_auth_rejection(self):
        provider = MockIdentityProvider()
        provider.customer_transport_error = True
        client = make_client(provider)

        with pytest.raises(IdentityLookupError) as exc_info:
            await client.fetch_customer(provider.issue_tokens()["access_token"])

        assert not exc_info.value.auth_rejected

    @pytest.mark.asyncio
    async def test_null_customer_is_auth_rejection(self):
        provider = MockIdentityProvider()
        provider.customer = None
        client = make_client(provider)

        with pytest.raises(IdentityLookupError) as exc_info:
            await client.fetch_customer(provider.issue_tokens()["access_token"])

        assert exc_info.value.auth_rejected

    @pytest.mark.asyncio
    async def test_malformed_contact_fields_are_dropped(self):
        provider = MockIdentityProvider()
        provider.customer = {
            "id": "gid://shopify/Customer/1",
            "emailAddress": "ada@example.com",
            "phoneNumber": {"phoneNumber": 5551234},
        }
        client = make_client(provider)

        customer = await client.fetch_customer(provider.issue_tokens()["access_token"])

        assert customer.id == "gid://shopify/Customer/1"
        assert customer.email is None
        assert customer.phone is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", ["unexpected", ["customer"], {"customer": "gid://shopify/Customer/1"}])
    async def test_unexpected_data_shape_is_auth_rejection(self, data):
        """Test a response of the wrong shape is a lookup error, not a crash."""

        def handler(request):
            if str(request.url) == GRAPHQL_ENDPOINT:
                return httpx.Response(200, json={"data": data})
            return httpx.Response(404)

        config = make_config()
        cache = DiscoveryCache()
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = IdentityProviderClient(config, http_client, EndpointResolver(config, http_client, cache), cache)

        with pytest.raises(IdentityLookupError) as exc_info:
            await client.fetch_customer("any-token")

        assert exc_info.value.auth_rejected

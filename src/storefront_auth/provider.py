"""HTTP client for the identity provider's token endpoint and Customer Account API."""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from storefront_auth.config import AuthConfig
from storefront_auth.discovery import DiscoveryCache, EndpointResolver
from storefront_auth.errors import ExchangeFailedError, IdentityLookupError
from storefront_auth.models import CustomerIdentity, TokenPair

logger = logging.getLogger(__name__)

CUSTOMER_ACCOUNT_API_PATH = "/.well-known/customer-account-api"
TOKEN_ENDPOINT_UNREACHABLE = "The identity provider could not be reached"

CUSTOMER_QUERY = """
query StorefrontAuthCustomer {
  customer {
    id
    firstName
    lastName
    emailAddress {
      emailAddress
    }
    phoneNumber {
      phoneNumber
    }
  }
}
"""


class IdentityProviderClient:
    """Talks to the identity provider on behalf of the storefront.

    The HTTP client is owned by the caller and shared across requests. Every
    call carries an explicit timeout from :attr:`AuthConfig.http_timeout`.
    """

    def __init__(
        self,
        config: AuthConfig,
        http_client: httpx.AsyncClient,
        endpoints: EndpointResolver,
        cache: DiscoveryCache,
    ):
        self.config = config
        self._client = http_client
        self._endpoints = endpoints
        self._cache = cache

    def _token_request_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }
        if self.config.is_confidential_client:
            credentials = f"{self.config.client_id}:{self.config.client_secret}".encode("utf-8")
            headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode('ascii')}"
        return headers

    async def _post_token(self, form: Dict[str, str], failure_description: str) -> Dict[str, Any]:
        endpoints = await self._endpoints.resolve()
        try:
            response = await self._client.post(
                endpoints.token_endpoint,
                data=form,
                headers=self._token_request_headers(),
                timeout=self.config.http_timeout,
            )
        except httpx.TransportError as e:
            logger.warning(f"Token endpoint unreachable: {e!r}")
            raise ExchangeFailedError(
                "temporarily_unavailable", TOKEN_ENDPOINT_UNREACHABLE, transient=True
            ) from e

        if response.status_code >= 400:
            raise self._error_from_response(response, failure_description)

        try:
            body = response.json()
        except ValueError as e:
            raise ExchangeFailedError(
                "server_error", "Token endpoint returned a non-JSON body", status_code=response.status_code
            ) from e
        if not isinstance(body, dict):
            raise ExchangeFailedError(
                "server_error", "Token endpoint returned an unexpected body", status_code=response.status_code
            )
        return body

    @staticmethod
    def _error_from_response(response: httpx.Response, failure_description: str) -> ExchangeFailedError:
        status = response.status_code
        if status >= 500:
            return ExchangeFailedError("server_error", f"HTTP {status}", status_code=status)
        try:
            error_data = response.json()
            error_code = str(error_data.get("error") or "invalid_grant")
            error_description = str(error_data.get("error_description") or failure_description)
        except (ValueError, AttributeError):
            error_code, error_description = "invalid_grant", failure_description
        return ExchangeFailedError(error_code, error_description, status_code=status)

    async def exchange_code(self, code: str, code_verifier: str) -> TokenPair:
        """Exchange an authorization code for tokens.

        Sent exactly once: authorization codes are single-use, so a failed
        attempt is never retried.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier saved when the login started

        Returns:
            The issued token pair

        Raises:
            ExchangeFailedError: If the provider rejects the request or is unreachable
        """
        form = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "code": code,
            "code_verifier": code_verifier,
        }
        body = await self._post_token(form, "Token exchange failed")
        try:
            tokens = TokenPair.from_token_response(body)
        except KeyError as e:
            raise ExchangeFailedError("server_error", "Token response has no access token") from e
        logger.info("Exchanged authorization code for tokens")
        return tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Refresh an access token.

        Transport failures (network, timeout) are retried once. Provider
        rejections are not.

        Raises:
            ExchangeFailedError: If the refresh did not succeed
        """
        if not refresh_token:
            raise ExchangeFailedError("invalid_request", "Refresh token is required")

        form = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "refresh_token": refresh_token,
        }
        try:
            body = await self._post_token(form, "Token refresh failed")
        except ExchangeFailedError as e:
            if not e.transient:
                raise
            logger.warning(f"Token refresh hit a transport error, retrying once: {e}")
            body = await self._post_token(form, "Token refresh failed")

        try:
            tokens = TokenPair.from_token_response(body, previous_refresh_token=refresh_token)
        except KeyError as e:
            raise ExchangeFailedError("server_error", "Refresh response has no access token") from e
        logger.info("Refreshed access token")
        return tokens

    async def customer_api_endpoint(self) -> str:
        """Resolve the Customer Account API GraphQL endpoint.

        Tries the shop domain's discovery document, then the account
        domain's, then falls back to the versioned path on the account domain.
        """
        return await self._cache.get_or_load(
            f"customer-api:{self.config.shop_domain}", self._discover_customer_api
        )

    async def _discover_customer_api(self) -> str:
        hosts = [self.config.shop_domain]
        if self.config.account_domain not in hosts:
            hosts.append(self.config.account_domain)

        for host in hosts:
            endpoint = await self._fetch_graphql_api(f"https://{host}{CUSTOMER_ACCOUNT_API_PATH}")
            if endpoint:
                return endpoint

        fallback = f"https://{self.config.account_domain}/customer/api/{self.config.api_version}/graphql"
        logger.info(f"Customer Account API discovery failed, using {fallback}")
        return fallback

    async def _fetch_graphql_api(self, url: str) -> Optional[str]:
        try:
            response = await self._client.get(
                url,
                headers={"Accept": "application/json", "User-Agent": self.config.user_agent},
                timeout=self.config.http_timeout,
            )
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Customer Account API discovery at {url} failed: {e!r}")
            return None
        endpoint = document.get("graphql_api") if isinstance(document, dict) else None
        return endpoint if isinstance(endpoint, str) and endpoint else None

    async def fetch_customer(self, access_token: str) -> CustomerIdentity:
        """Fetch the signed-in customer's identity.

        Raises:
            IdentityLookupError: ``auth_rejected`` is set when the provider
                refused the token rather than failing to answer
        """
        endpoint = await self.customer_api_endpoint()
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            # The Customer Account API takes the raw token, no Bearer prefix
            "Authorization": access_token,
            "Origin": self.config.site_url,
            "User-Agent": self.config.user_agent,
        }
        try:
            response = await self._client.post(
                endpoint,
                json={"query": CUSTOMER_QUERY, "variables": {}},
                headers=headers,
                timeout=self.config.http_timeout,
            )
        except httpx.TransportError as e:
            raise IdentityLookupError(f"Customer Account API unreachable: {e!r}") from e

        if response.status_code in (401, 403):
            raise IdentityLookupError(
                f"Customer Account API rejected the token (HTTP {response.status_code})",
                auth_rejected=True,
            )
        if response.status_code >= 400:
            raise IdentityLookupError(f"Customer Account API returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise IdentityLookupError("Customer Account API returned a non-JSON body") from e
        if not isinstance(payload, dict):
            raise IdentityLookupError("Customer Account API returned an unexpected body")

        if payload.get("errors"):
            raise IdentityLookupError(
                f"Customer query returned errors: {payload['errors']!r}", auth_rejected=True
            )
        data = payload.get("data")
        customer = data.get("customer") if isinstance(data, dict) else None
        if not isinstance(customer, dict) or not isinstance(customer.get("id"), str) or not customer["id"]:
            raise IdentityLookupError("Customer query returned no customer", auth_rejected=True)

        return CustomerIdentity(
            id=customer["id"],
            email=_nested_value(customer, "emailAddress"),
            first_name=customer.get("firstName"),
            last_name=customer.get("lastName"),
            phone=_nested_value(customer, "phoneNumber"),
        )


def _nested_value(customer: Dict[str, Any], field: str) -> Optional[str]:
    """Read ``customer[field][field]``, the shape of the contact fields."""
    container = customer.get(field)
    value = container.get(field) if isinstance(container, dict) else None
    return value if isinstance(value, str) else None

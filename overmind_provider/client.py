"""Overmind management API client speaking the Connect protocol over JSON."""

import base64
import binascii
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import SecretStr
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from overmind_provider.exceptions import (
    ConfigurationError,
    RemoteError,
    RemoteNotFoundError,
    RemoteTransientError,
)
from overmind_provider.models import RemoteSourceRecord

logger = structlog.get_logger(__name__)

MANAGEMENT_SERVICE = "sdp.ManagementService"
INSTANCE_DATA_PATH = "/api/public/instance-data"
CONNECT_PROTOCOL_VERSION = "1"
NOT_FOUND_CODE = "not_found"


@runtime_checkable
class ExternalIdService(Protocol):
    """Capability needed to bootstrap the account's external ID."""

    async def get_or_create_aws_external_id(self) -> str: ...


@runtime_checkable
class ManagementService(ExternalIdService, Protocol):
    """Capabilities needed to manage source records."""

    async def create_source(
        self, descriptive_name: str, kind: str, config: dict[str, str]
    ) -> RemoteSourceRecord: ...

    async def get_source(self, identifier: bytes) -> RemoteSourceRecord: ...

    async def update_source(
        self,
        identifier: bytes,
        descriptive_name: str,
        kind: str,
        config: dict[str, str],
    ) -> RemoteSourceRecord: ...

    async def delete_source(self, identifier: bytes) -> None: ...


class ManagementClient:
    """Async client for the management service.

    One instance is shared by every resource in the process; it holds no
    per-call state apart from the pooled HTTP connections.
    """

    def __init__(
        self,
        api_url: str,
        api_key: SecretStr,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the management client.

        Args:
            api_url: Base URL of the Overmind API.
            api_key: API key, sent as a bearer token.
            timeout_seconds: Per-request HTTP timeout.
            http_client: Optional pre-built HTTP client. The caller keeps
                ownership of it.
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._logger = logger.bind(client_type="ManagementClient", api_url=self.api_url)

    async def __aenter__(self) -> "ManagementClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_http_client:
            try:
                await self._http_client.aclose()
            except Exception as e:
                self._logger.warning("Error closing HTTP client", error=str(e))
            finally:
                self._http_client = None
        self._logger.debug("Management client closed")

    @property
    def http_client(self) -> httpx.AsyncClient:
        """The HTTP client, created on first use."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
            self._owns_http_client = True
        return self._http_client

    # External ID

    async def get_or_create_aws_external_id(self) -> str:
        """Get the account's AWS external ID, creating it on first use.

        Returns:
            The external ID. The server guarantees it is stable per account.

        Raises:
            RemoteError: If the API call fails.
        """
        body = await self._call("GetOrCreateAWSExternalId", {})
        return body.get("awsExternalId", "")

    # Sources

    async def create_source(
        self, descriptive_name: str, kind: str, config: dict[str, str]
    ) -> RemoteSourceRecord:
        """Create a source record. The server assigns its identifier."""
        body = await self._call(
            "CreateSource",
            {"properties": _properties(descriptive_name, kind, config)},
        )
        return self._parse_source("CreateSource", body)

    async def get_source(self, identifier: bytes) -> RemoteSourceRecord:
        """Fetch a source record.

        Raises:
            RemoteNotFoundError: If no source has this identifier.
            RemoteTransientError: For any other failure.
        """
        body = await self._call("GetSource", {"UUID": _encode_bytes(identifier)})
        return self._parse_source("GetSource", body)

    async def update_source(
        self,
        identifier: bytes,
        descriptive_name: str,
        kind: str,
        config: dict[str, str],
    ) -> RemoteSourceRecord:
        """Replace a source's properties, including its whole config map."""
        body = await self._call(
            "UpdateSource",
            {
                "UUID": _encode_bytes(identifier),
                "properties": _properties(descriptive_name, kind, config),
            },
        )
        return self._parse_source("UpdateSource", body)

    async def delete_source(self, identifier: bytes) -> None:
        """Delete a source record.

        Raises:
            RemoteNotFoundError: If no source has this identifier.
            RemoteTransientError: For any other failure.
        """
        await self._call("DeleteSource", {"UUID": _encode_bytes(identifier)})

    # Transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key.get_secret_value()}",
            "Connect-Protocol-Version": CONNECT_PROTOCOL_VERSION,
        }

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Issue one unary Connect call and return the decoded response body.

        Raises:
            RemoteNotFoundError: If the server answers with ``not_found``.
            RemoteTransientError: For transport failures, other error codes
                and undecodable responses.
        """
        url = f"{self.api_url}/{MANAGEMENT_SERVICE}/{method}"
        self._logger.debug("Calling management API", method=method)

        try:
            response = await self.http_client.post(
                url, json=payload, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            raise RemoteTransientError(
                f"{method} timed out", code="deadline_exceeded"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteTransientError(f"{method} failed: {e}", code="unavailable") from e

        if response.status_code != httpx.codes.OK:
            error = self._convert_error(method, response)
            self._logger.debug(
                "Management API returned an error",
                method=method,
                code=error.code,
                status_code=response.status_code,
            )
            raise error

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteTransientError(
                f"{method} returned an undecodable response",
                code="internal",
                status_code=response.status_code,
                response_text=response.text,
            ) from e
        if not isinstance(body, dict):
            raise RemoteTransientError(
                f"{method} returned an unexpected response",
                code="internal",
                status_code=response.status_code,
                response_text=response.text,
            )
        return body

    def _convert_error(self, method: str, response: httpx.Response) -> RemoteError:
        """Map a Connect error response to the provider's exception types."""
        code = None
        message = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message")

        # Intermediaries may answer without a Connect error body
        if code is None and response.status_code == httpx.codes.NOT_FOUND:
            code = NOT_FOUND_CODE

        error_class = RemoteNotFoundError if code == NOT_FOUND_CODE else RemoteTransientError
        return error_class(
            f"{method} failed: {message or response.reason_phrase}",
            code=code,
            status_code=response.status_code,
            response_text=response.text,
        )

    def _parse_source(self, method: str, body: dict[str, Any]) -> RemoteSourceRecord:
        try:
            source = _object(body.get("source"))
            metadata = _object(source.get("metadata"))
            properties = _object(source.get("properties"))
            raw_config = _object(properties.get("config"))
        except TypeError as e:
            raise RemoteTransientError(
                f"{method} returned a malformed source: {e}", code="internal"
            ) from e

        try:
            identifier = _decode_bytes(metadata.get("UUID", ""))
        except (binascii.Error, AttributeError) as e:
            raise RemoteTransientError(
                f"{method} returned a malformed source UUID", code="internal"
            ) from e

        config = {}
        for key, value in raw_config.items():
            if isinstance(value, str):
                config[key] = value
            else:
                self._logger.debug(
                    "Ignoring non-string config value", method=method, key=key
                )

        return RemoteSourceRecord(
            identifier=identifier,
            descriptive_name=properties.get("descriptiveName", ""),
            kind=properties.get("type", ""),
            config=config,
        )


async def resolve_api_url(
    app_url: str,
    http_client: httpx.AsyncClient,
    retry_attempts: int = 3,
    retry_delay: float = 1.0,
) -> str:
    """Discover the API URL for an Overmind instance from its app URL.

    Args:
        app_url: Overmind application URL, e.g. https://app.overmind.tech.
        http_client: HTTP client to issue the lookup with.
        retry_attempts: Retries after the first failed attempt.
        retry_delay: Initial backoff between attempts, in seconds.

    Returns:
        The instance's API base URL.

    Raises:
        ConfigurationError: If the instance data cannot be fetched or parsed.
    """
    url = f"{app_url.rstrip('/')}{INSTANCE_DATA_PATH}"
    log = logger.bind(app_url=app_url)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retry_attempts + 1),
            wait=wait_exponential(multiplier=retry_delay, max=30.0),
            retry=retry_if_exception(_is_retryable_lookup_error),
            reraise=True,
        ):
            with attempt:
                log.debug(
                    "Fetching instance data",
                    attempt=attempt.retry_state.attempt_number,
                )
                response = await http_client.get(url)
                response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ConfigurationError(
            f"Could not resolve instance data from {app_url}: {e}"
        ) from e

    api_url = data.get("api_url") if isinstance(data, dict) else None
    if not api_url:
        raise ConfigurationError(
            f"Could not resolve instance data from {app_url}: response has no api_url"
        )

    log.debug("Resolved Overmind instance", api_url=api_url)
    return api_url


def _is_retryable_lookup_error(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    return (
        isinstance(error, httpx.HTTPStatusError)
        and error.response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR
    )


def _object(value: Any) -> dict[str, Any]:
    # Protobuf JSON omits empty messages
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"expected an object, got {type(value).__name__}")
    return value


def _properties(descriptive_name: str, kind: str, config: dict[str, str]) -> dict[str, Any]:
    return {"descriptiveName": descriptive_name, "type": kind, "config": dict(config)}


def _encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode_bytes(value: str) -> bytes:
    # Protobuf JSON allows both alphabets, with or without padding
    normalized = value.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)

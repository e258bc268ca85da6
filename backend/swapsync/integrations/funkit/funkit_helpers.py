from typing import Dict, cast

import httpx

from swapsync.core.errors import FetchError, FetchErrorKind
from swapsync.integrations.funkit.funkit_constants import (
    API_KEY_HEADER,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_TOO_MANY_REQUESTS,
    JSON,
)
from swapsync.logging.logger import get_logger

log = get_logger(__name__)


def _build_funkit_headers(api_key: str) -> Dict[str, str]:
    """
    Construct Funkit HTTP headers, including the API key if configured.
    """
    headers: Dict[str, str] = {"Accept": "application/json"}
    if isinstance(api_key, str) and api_key.strip():
        headers[API_KEY_HEADER] = api_key.strip()
    return headers


def _fetch_error_from_status(exc: httpx.HTTPStatusError, what: str) -> FetchError:
    status_code = exc.response.status_code
    if status_code == HTTP_STATUS_NOT_FOUND:
        return FetchError(FetchErrorKind.NOT_FOUND, f"{what} not found", status_code=status_code)
    if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
        return FetchError(FetchErrorKind.RATE_LIMITED, f"Rate limited while fetching {what}", status_code=status_code)
    return FetchError(
        FetchErrorKind.NETWORK_ERROR,
        f"Upstream returned HTTP {status_code} for {what}",
        status_code=status_code,
    )


async def _http_get_json(client: httpx.AsyncClient, path: str, what: str) -> Dict[str, JSON]:
    """
    Perform a GET request and return the parsed JSON object.

    Raises:
        FetchError: NOT_FOUND on 404, RATE_LIMITED on 429, NETWORK_ERROR on other
        HTTP statuses, transport errors and undecodable bodies.
    """
    try:
        response = await client.get(path)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        log.warning(
            "[FUNKIT][HTTP] GET fails: path=%s status=%s body=%s",
            path,
            exc.response.status_code,
            exc.response.text[:200],
        )
        raise _fetch_error_from_status(exc, what) from exc
    except httpx.RequestError as exc:
        log.warning("[FUNKIT][HTTP] GET request error: path=%s error=%s", path, str(exc))
        raise FetchError(FetchErrorKind.NETWORK_ERROR, f"Failed to fetch {what}: {exc}") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        log.debug("[FUNKIT][HTTP] JSON parse failed for path '%s'.", path)
        raise FetchError(FetchErrorKind.NETWORK_ERROR, f"Invalid JSON while fetching {what}") from exc

    if not isinstance(payload, dict):
        raise FetchError(FetchErrorKind.NOT_FOUND, f"{what} not found")
    return cast(Dict[str, JSON], payload)

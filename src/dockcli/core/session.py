"""aiohttp session creation and response helpers."""

import json
import logging
from typing import Any, Optional

import aiohttp

from ..exceptions import NotFoundError, RemoteOperationError, UnauthorizedError
from .types import EngineConfig

logger = logging.getLogger(__name__)

USER_AGENT = "dockcli/0.1.0"


async def create_session(config: Optional[EngineConfig] = None) -> aiohttp.ClientSession:
    """Create a client session for the engine host.

    Args:
        config: Engine configuration; a unix socket host gets a UnixConnector

    Returns:
        Open aiohttp session (caller closes it)
    """
    config = config or EngineConfig()
    connector: Optional[aiohttp.BaseConnector] = None
    if config.is_unix_socket:
        connector = aiohttp.UnixConnector(path=config.socket_path)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=config.timeout),
        headers={"User-Agent": USER_AGENT},
    )


async def parse_json_response(resp: aiohttp.ClientResponse) -> Any:
    """Decode a JSON body regardless of the declared content type.

    Raises:
        RemoteOperationError: If the body is not valid JSON
    """
    text = await resp.text()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise RemoteOperationError(
            f"invalid JSON response from {resp.url}: {e}", status=resp.status
        ) from e


async def raise_for_engine_error(resp: aiohttp.ClientResponse) -> None:
    """Translate a non-2xx engine response into a client exception.

    Raises:
        NotFoundError: On 404
        UnauthorizedError: On 401
        RemoteOperationError: On any other error status
    """
    if resp.status < 400:
        return

    text = await resp.text()
    message = text.strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict) and data.get("message"):
            message = data["message"]
    except json.JSONDecodeError:
        pass
    if not message:
        message = f"engine returned status {resp.status}"

    logger.debug("engine error %s %s: %s", resp.status, resp.url, message)
    if resp.status == 404:
        raise NotFoundError(message, status=resp.status)
    if resp.status == 401:
        raise UnauthorizedError(message, status=resp.status)
    raise RemoteOperationError(message, status=resp.status)

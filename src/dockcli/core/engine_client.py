"""Container engine API async client implementation."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..exceptions import (
    EngineConnectionError,
    InvalidReferenceError,
    RemoteOperationError,
    UnauthorizedError,
)
from ..reference import parse_normalized_named, tag_name_only
from .jsonstream import JSONMessageStream
from .session import create_session, parse_json_response, raise_for_engine_error
from .types import (
    CreateResponse,
    EngineConfig,
    PluginInstallOptions,
    PluginPrivilege,
    Task,
)

logger = logging.getLogger(__name__)

REGISTRY_AUTH_HEADER = "X-Registry-Auth"
PLUGIN_NAME_HEADER = "Docker-Plugin-Name"


def _query(params: Dict[str, Any]) -> Dict[str, str]:
    """Drop empty values and stringify the rest for the query string."""
    query = {}
    for key, value in params.items():
        if value is None or value == "" or value is False:
            continue
        query[key] = "1" if value is True else str(value)
    return query


class EngineClient:
    """Container engine API async client."""

    def __init__(
        self,
        config: EngineConfig,
        cancelled: Optional[asyncio.Event] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the engine client.

        Args:
            config: Engine connection settings
            cancelled: Event set when the invocation is being cancelled
            session: Existing session to use instead of creating one
        """
        self.config = config
        self.cancelled = cancelled
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "EngineClient":
        """Enter async context manager."""
        if not self.session:
            self.session = await create_session(self.config)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    @property
    def api_version(self) -> str:
        return self.config.api_version

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> aiohttp.ClientResponse:
        """Send a request and raise for engine errors.

        The caller owns the returned response and must release it.
        """
        url = f"{self.config.base_url}{path}"
        logger.debug("%s %s params=%s", method, url, params)
        try:
            resp = await self.session.request(
                method,
                url,
                params=_query(params or {}),
                json=json_body,
                data=data,
                headers=headers,
            )
        except aiohttp.ClientConnectionError as e:
            raise EngineConnectionError(
                f"Cannot connect to the engine at {self.config.host}. "
                f"Is the daemon running? ({e})"
            ) from e
        except aiohttp.ClientError as e:
            raise RemoteOperationError(f"request to {url} failed: {e}") from e

        try:
            await raise_for_engine_error(resp)
        except RemoteOperationError:
            resp.release()
            raise
        return resp

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        try:
            return await parse_json_response(resp)
        finally:
            resp.release()

    async def _stream(self, method: str, path: str, **kwargs: Any) -> JSONMessageStream:
        resp = await self._request(method, path, **kwargs)
        return JSONMessageStream(resp, self.cancelled)

    # -- Containers ---------------------------------------------------------

    async def container_create(
        self,
        config: Dict[str, Any],
        host_config: Dict[str, Any],
        networking_config: Optional[Dict[str, Any]] = None,
        platform: Optional[str] = None,
        name: str = "",
    ) -> CreateResponse:
        """Create a container.

        Raises:
            NotFoundError: If the image does not exist locally
            RemoteOperationError: For any other failure
        """
        body = dict(config)
        body["HostConfig"] = host_config
        body["NetworkingConfig"] = networking_config or {}
        data = await self._json(
            "POST",
            "/containers/create",
            params={"name": name, "platform": platform},
            json_body=body,
        )
        data = data or {}
        return CreateResponse(id=data.get("Id", ""), warnings=data.get("Warnings") or [])

    async def copy_to_container(self, container_id: str, path: str, archive: bytes) -> None:
        """Extract a tar archive into a container at path."""
        resp = await self._request(
            "PUT",
            f"/containers/{container_id}/archive",
            params={"path": path},
            data=archive,
            headers={"Content-Type": "application/x-tar"},
        )
        resp.release()

    # -- Images -------------------------------------------------------------

    async def image_create(
        self, image: str, registry_auth: str = "", platform: str = ""
    ) -> JSONMessageStream:
        """Pull an image, returning the progress stream.

        Raises:
            InvalidReferenceError: If image is not a valid reference
        """
        ref = parse_normalized_named(image)
        params = {
            "fromImage": ref.familiar_name,
            "tag": ref.digest or ref.tag,
            "platform": platform,
        }
        headers = {REGISTRY_AUTH_HEADER: registry_auth} if registry_auth else None
        return await self._stream("POST", "/images/create", params=params, headers=headers)

    async def image_tag(self, source: str, target: str) -> None:
        """Tag the image source as target.

        Raises:
            InvalidReferenceError: If target is digest-qualified or malformed
        """
        ref = parse_normalized_named(target)
        if ref.is_canonical:
            raise InvalidReferenceError("refusing to create a tag with a digest reference")
        ref = tag_name_only(ref)
        resp = await self._request(
            "POST",
            f"/images/{source}/tag",
            params={"repo": ref.familiar_name, "tag": ref.tag},
        )
        resp.release()

    # -- Plugins ------------------------------------------------------------

    async def plugin_privileges(self, remote: str, registry_auth: str) -> List[PluginPrivilege]:
        data = await self._json(
            "GET",
            "/plugins/privileges",
            params={"remote": remote},
            headers={REGISTRY_AUTH_HEADER: registry_auth},
        )
        return [PluginPrivilege.from_api(item) for item in data or []]

    async def _check_plugin_permissions(
        self, options: PluginInstallOptions
    ) -> tuple[Optional[List[PluginPrivilege]], str]:
        registry_auth = options.registry_auth
        try:
            privileges = await self.plugin_privileges(options.remote_ref, registry_auth)
        except UnauthorizedError:
            if options.privilege_func is None:
                raise
            logger.debug("privileges request unauthorized, asking for credentials")
            registry_auth = await options.privilege_func()
            privileges = await self.plugin_privileges(options.remote_ref, registry_auth)

        if (
            not options.accept_all_permissions
            and options.accept_permissions is not None
            and privileges
        ):
            if not await options.accept_permissions(privileges):
                return None, registry_auth
        return privileges, registry_auth

    async def plugin_install(
        self, name: str, options: PluginInstallOptions
    ) -> Optional[JSONMessageStream]:
        """Negotiate privileges and pull a plugin.

        Args:
            name: Local name for the plugin; empty defaults to the remote
            options: Install request

        Returns:
            The pull progress stream, or None if the privileges were declined

        Raises:
            InvalidReferenceError: If the remote reference is malformed
            RemoteOperationError: If the engine rejects the request
        """
        try:
            parse_normalized_named(options.remote_ref)
        except InvalidReferenceError as e:
            raise InvalidReferenceError(f"invalid remote reference: {e}") from e

        privileges, registry_auth = await self._check_plugin_permissions(options)
        if privileges is None:
            logger.info("privileges for %s declined", options.remote_ref)
            return None

        return await self._stream(
            "POST",
            "/plugins/pull",
            params={"remote": options.remote_ref, "name": name},
            json_body=[privilege.to_api() for privilege in privileges],
            headers={REGISTRY_AUTH_HEADER: registry_auth},
        )

    async def plugin_enable(self, name: str, timeout: int = 0) -> None:
        resp = await self._request(
            "POST", f"/plugins/{name}/enable", params={"timeout": str(timeout)}
        )
        resp.release()

    async def plugin_set(self, name: str, args: List[str]) -> None:
        """Apply KEY=VALUE settings to an installed plugin."""
        resp = await self._request("POST", f"/plugins/{name}/set", json_body=args)
        resp.release()

    async def plugin_create(self, name: str, context: bytes) -> None:
        """Create a plugin from a tar archive of its rootfs and config."""
        resp = await self._request(
            "POST",
            "/plugins/create",
            params={"name": name},
            data=context,
            headers={"Content-Type": "application/x-tar"},
        )
        resp.release()

    async def plugin_push(self, name: str, registry_auth: str) -> JSONMessageStream:
        return await self._stream(
            "POST",
            f"/plugins/{name}/push",
            headers={REGISTRY_AUTH_HEADER: registry_auth},
        )

    async def plugin_remove(self, name: str, force: bool = False) -> None:
        resp = await self._request("DELETE", f"/plugins/{name}", params={"force": force})
        resp.release()

    # -- Swarm --------------------------------------------------------------

    async def task_list(self, filters: Dict[str, List[str]]) -> List[Task]:
        encoded = {key: {value: True for value in values} for key, values in filters.items()}
        params = {"filters": json.dumps(encoded)}
        data = await self._json("GET", "/tasks", params=params)
        return [Task.from_api(item) for item in data or []]

    async def service_inspect(self, service_id: str) -> Dict[str, Any]:
        return await self._json("GET", f"/services/{service_id}") or {}

    async def node_inspect(self, node_id: str) -> Dict[str, Any]:
        return await self._json("GET", f"/nodes/{node_id}") or {}


"""Credential stores: the config file itself and external helper programs."""

import asyncio
import json
import logging
import shutil
from dataclasses import replace
from typing import Dict, Optional

from ..core.types import AuthConfig
from ..exceptions import CredentialHelperError
from .configfile import ConfigFile

logger = logging.getLogger(__name__)

HELPER_PREFIX = "docker-credential-"
TOKEN_USERNAME = "<token>"
NOT_FOUND_MESSAGE = "credentials not found in native keychain"


def default_credentials_store() -> str:
    """Platform default helper name on Linux."""
    if shutil.which("pass"):
        return "pass"
    return "secretservice"


def detect_default_store(configured: str) -> str:
    """Use the platform default helper when none is configured and it is installed."""
    if configured:
        return configured
    candidate = default_credentials_store()
    if shutil.which(HELPER_PREFIX + candidate):
        return candidate
    return ""


def convert_to_hostname(url: str) -> str:
    """Strip scheme and path from a registry address."""
    stripped = url
    for scheme in ("http://", "https://"):
        if stripped.startswith(scheme):
            stripped = stripped[len(scheme) :]
            break
    return stripped.split("/", 1)[0]


class FileStore:
    """Credentials kept inline in the config file."""

    def __init__(self, config: ConfigFile) -> None:
        self.config = config

    async def get(self, server_address: str) -> AuthConfig:
        auth = self.config.auths.get(server_address)
        if auth is None:
            # Fall back to a hostname match ("https://host/v1/" vs "host")
            wanted = convert_to_hostname(server_address)
            for key, candidate in self.config.auths.items():
                if convert_to_hostname(key) == wanted:
                    auth = candidate
                    break
        if auth is None:
            return AuthConfig(server_address=server_address)
        return replace(auth)

    async def get_all(self) -> Dict[str, AuthConfig]:
        return {key: replace(auth) for key, auth in self.config.auths.items()}


class NativeStore:
    """Credentials managed by a docker-credential-<helper> program."""

    def __init__(self, helper: str, file_store: FileStore) -> None:
        self.helper = helper
        self.program = HELPER_PREFIX + helper
        self.file_store = file_store

    async def _run(self, action: str, payload: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.program,
                action,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CredentialHelperError(f"error getting credentials - err: {e}") from e

        stdout, stderr = await proc.communicate(payload.encode("utf-8"))
        output = stdout.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            message = output or stderr.decode("utf-8", errors="replace").strip()
            raise CredentialHelperError(message or f"{self.program} {action} failed")
        return output

    async def get(self, server_address: str) -> AuthConfig:
        try:
            output = await self._run("get", server_address)
        except CredentialHelperError as e:
            if NOT_FOUND_MESSAGE in str(e):
                logger.debug("no %s credentials for %s", self.helper, server_address)
                return await self.file_store.get(server_address)
            raise

        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise CredentialHelperError(f"invalid output from {self.program}: {e}") from e

        auth = AuthConfig(server_address=server_address)
        username, secret = data.get("Username", ""), data.get("Secret", "")
        if username == TOKEN_USERNAME:
            auth.identity_token = secret
        else:
            auth.username = username
            auth.password = secret
        file_auth = await self.file_store.get(server_address)
        auth.email = file_auth.email
        return auth

    async def get_all(self) -> Dict[str, AuthConfig]:
        auths = await self.file_store.get_all()
        try:
            data = json.loads(await self._run("list", "") or "{}")
        except json.JSONDecodeError as e:
            raise CredentialHelperError(f"invalid output from {self.program}: {e}") from e
        for server in data:
            auths[server] = await self.get(server)
        return auths


def get_credentials_store(
    config: ConfigFile, server_address: str, creds_store: Optional[str] = None
) -> "FileStore | NativeStore":
    """Pick the store responsible for a registry address.

    Args:
        config: Loaded configuration
        server_address: Registry address being looked up
        creds_store: Default helper name already resolved at startup
    """
    file_store = FileStore(config)
    helper = config.cred_helpers.get(convert_to_hostname(server_address))
    if helper:
        return NativeStore(helper, file_store)
    store = config.creds_store if creds_store is None else creds_store
    if store:
        return NativeStore(store, file_store)
    return file_store


async def get_all_credentials(
    config: ConfigFile, creds_store: Optional[str] = None
) -> Dict[str, AuthConfig]:
    """Collect every credential known to the default store and per-host helpers."""
    store = config.creds_store if creds_store is None else creds_store
    file_store = FileStore(config)
    auths = await (NativeStore(store, file_store) if store else file_store).get_all()
    for host, helper in config.cred_helpers.items():
        auths[host] = await NativeStore(helper, file_store).get(host)
    return auths

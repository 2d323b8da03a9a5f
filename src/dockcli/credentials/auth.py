"""Registry authentication lookup and encoding."""

import base64
import json
import logging
from typing import Optional

from ..core.types import AuthConfig, PrivilegeFunc
from ..exceptions import AuthEncodingError, ConfigFileError, CredentialHelperError
from ..prompt import Prompter
from ..reference import DEFAULT_DOMAIN, parse_normalized_named
from .configfile import ConfigFile
from .store import get_credentials_store

logger = logging.getLogger(__name__)

INDEX_SERVER = "https://index.docker.io/v1/"


def auth_key_for_index(index_name: str) -> str:
    """Config key under which credentials for a registry host are stored."""
    if index_name in (DEFAULT_DOMAIN, "index.docker.io"):
        return INDEX_SERVER
    return index_name


def encode_auth_config(auth: AuthConfig) -> str:
    """Encode credentials for the X-Registry-Auth header (base64url JSON).

    Raises:
        AuthEncodingError: If the credentials cannot be serialized
    """
    try:
        payload = json.dumps(auth.to_api()).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise AuthEncodingError(f"cannot encode registry credentials: {e}") from e
    return base64.urlsafe_b64encode(payload).decode("ascii")


async def resolve_auth_config(
    config: ConfigFile, index_name: str, creds_store: Optional[str] = None
) -> AuthConfig:
    """Look up the credentials for a registry host.

    Raises:
        AuthEncodingError: If the credential store fails
    """
    key = auth_key_for_index(index_name)
    store = get_credentials_store(config, key, creds_store)
    try:
        auth = await store.get(key)
    except (CredentialHelperError, ConfigFileError) as e:
        raise AuthEncodingError(f"error getting credentials for {key}: {e}") from e
    if not auth.server_address:
        auth.server_address = key
    return auth


async def encoded_auth_for_index(
    config: ConfigFile, index_name: str, creds_store: Optional[str] = None
) -> str:
    auth = await resolve_auth_config(config, index_name, creds_store)
    return encode_auth_config(auth)


async def retrieve_auth_token_from_image(
    config: ConfigFile, image: str, creds_store: Optional[str] = None
) -> str:
    """Encoded credentials for the registry an image reference points to."""
    ref = parse_normalized_named(image)
    return await encoded_auth_for_index(config, ref.index_name, creds_store)


def registry_authentication_privileged_func(
    config: ConfigFile,
    prompter: Prompter,
    index_name: str,
    cmd_name: str,
    creds_store: Optional[str] = None,
) -> PrivilegeFunc:
    """Build the callback the engine client uses after an unauthorized response.

    The callback asks for a username and password, defaulting the username
    to the stored one, and returns a freshly encoded auth header.
    """

    async def privileged() -> str:
        prompter.out.write(f"\nLogin prior to {cmd_name}:\n")
        stored = await resolve_auth_config(config, index_name, creds_store)
        hint = f" ({stored.username})" if stored.username else ""
        username = (await prompter.read_line(f"Username{hint}: ")).strip() or stored.username
        if not username:
            raise AuthEncodingError("Error: Non-null Username Required")
        password = await prompter.read_secret("Password: ")
        if not password:
            raise AuthEncodingError("Error: Password Required")
        auth = AuthConfig(
            username=username,
            password=password,
            server_address=auth_key_for_index(index_name),
        )
        return encode_auth_config(auth)

    return privileged

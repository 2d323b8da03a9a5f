"""Credential lookup for registries and trust servers."""

from .auth import (
    INDEX_SERVER,
    auth_key_for_index,
    encode_auth_config,
    encoded_auth_for_index,
    registry_authentication_privileged_func,
    resolve_auth_config,
    retrieve_auth_token_from_image,
)
from .configfile import ConfigFile, load_config_file
from .store import default_credentials_store, detect_default_store, get_all_credentials

__all__ = [
    "INDEX_SERVER",
    "ConfigFile",
    "auth_key_for_index",
    "default_credentials_store",
    "detect_default_store",
    "encode_auth_config",
    "encoded_auth_for_index",
    "get_all_credentials",
    "load_config_file",
    "registry_authentication_privileged_func",
    "resolve_auth_config",
    "retrieve_auth_token_from_image",
]

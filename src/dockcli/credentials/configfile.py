"""Client configuration file (config.json) handling."""

import base64
import binascii
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles

from ..core.types import AuthConfig
from ..exceptions import ConfigFileError

# config.json proxy keys and the environment variables they map to
PROXY_ENV = {
    "httpProxy": "HTTP_PROXY",
    "httpsProxy": "HTTPS_PROXY",
    "noProxy": "NO_PROXY",
    "ftpProxy": "FTP_PROXY",
    "allProxy": "ALL_PROXY",
}


@dataclass
class ConfigFile:
    """Parsed contents of the client configuration file."""

    filename: Optional[Path] = None
    auths: Dict[str, AuthConfig] = field(default_factory=dict)
    creds_store: str = ""
    cred_helpers: Dict[str, str] = field(default_factory=dict)
    proxies: Dict[str, Dict[str, str]] = field(default_factory=dict)
    current_context: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], filename: Optional[Path] = None) -> "ConfigFile":
        auths = {}
        for server, entry in (data.get("auths") or {}).items():
            auths[server] = decode_auth_entry(server, entry or {})
        return cls(
            filename=filename,
            auths=auths,
            creds_store=data.get("credsStore", ""),
            cred_helpers=dict(data.get("credHelpers") or {}),
            proxies=dict(data.get("proxies") or {}),
            current_context=data.get("currentContext", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"auths": {}}
        for server, auth in self.auths.items():
            entry: Dict[str, str] = {}
            if auth.username or auth.password:
                raw = f"{auth.username}:{auth.password}".encode("utf-8")
                entry["auth"] = base64.b64encode(raw).decode("ascii")
            if auth.identity_token:
                entry["identitytoken"] = auth.identity_token
            data["auths"][server] = entry
        if self.creds_store:
            data["credsStore"] = self.creds_store
        if self.cred_helpers:
            data["credHelpers"] = self.cred_helpers
        if self.proxies:
            data["proxies"] = self.proxies
        if self.current_context:
            data["currentContext"] = self.current_context
        return data

    def parse_proxy_config(
        self, host: str, run_opts: Dict[str, Optional[str]]
    ) -> Dict[str, Optional[str]]:
        """Merge configured proxies into container environment options.

        Variables already present in run_opts (either case) are kept as is.

        Args:
            host: Engine host, used to pick a host-specific proxy block
            run_opts: Environment given on the command line (None means unset value)

        Returns:
            Merged environment mapping
        """
        proxy = self.proxies.get(host) or self.proxies.get("default")
        merged = dict(run_opts)
        if not proxy:
            return merged
        for key, env_name in PROXY_ENV.items():
            value = proxy.get(key)
            if not value:
                continue
            if env_name in merged or env_name.lower() in merged:
                continue
            merged[env_name] = value
            merged[env_name.lower()] = value
        return merged


def decode_auth_entry(server: str, entry: Dict[str, Any]) -> AuthConfig:
    """Decode a single auths entry.

    Raises:
        ConfigFileError: If the auth field is not valid base64 "user:password"
    """
    auth = AuthConfig(
        server_address=entry.get("serveraddress", server),
        email=entry.get("email", ""),
        identity_token=entry.get("identitytoken", ""),
        registry_token=entry.get("registrytoken", ""),
    )
    encoded = entry.get("auth", "")
    if encoded:
        try:
            decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigFileError(f"invalid auth configuration for {server}: {e}") from e
        username, sep, password = decoded.partition(":")
        if not sep:
            raise ConfigFileError(f"invalid auth configuration for {server}")
        auth.username = username
        auth.password = password.strip("\x00")
    return auth


async def load_config_file(path: Path) -> ConfigFile:
    """Read the configuration file, returning an empty config if it is missing.

    Raises:
        ConfigFileError: If the file exists but cannot be parsed
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
    except FileNotFoundError:
        return ConfigFile(filename=path)
    except OSError as e:
        raise ConfigFileError(f"cannot read {path}: {e}") from e

    if not content.strip():
        return ConfigFile(filename=path)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigFileError(f"{path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigFileError(f"{path}: configuration must be a JSON object")
    return ConfigFile.from_dict(data, filename=path)

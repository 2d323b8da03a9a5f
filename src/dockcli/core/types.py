"""Data types shared by the engine client and the commands."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_API_VERSION = "1.47"
DEFAULT_HOST = "unix:///var/run/docker.sock"


@dataclass(frozen=True)
class EngineConfig:
    """Connection settings for the engine API."""

    host: str = DEFAULT_HOST
    api_version: str = DEFAULT_API_VERSION
    timeout: Optional[int] = None

    @property
    def is_unix_socket(self) -> bool:
        return self.host.startswith("unix://")

    @property
    def socket_path(self) -> str:
        return self.host[len("unix://") :]

    @property
    def base_url(self) -> str:
        """HTTP base URL including the API version prefix."""
        if self.is_unix_socket:
            root = "http://localhost"
        elif self.host.startswith("tcp://"):
            root = "http://" + self.host[len("tcp://") :]
        else:
            root = self.host.rstrip("/")
        return f"{root}/v{self.api_version}"


@dataclass
class AuthConfig:
    """Registry credentials as stored in config.json or a credential helper."""

    username: str = ""
    password: str = ""
    auth: str = ""
    email: str = ""
    server_address: str = ""
    identity_token: str = ""
    registry_token: str = ""

    def to_api(self) -> dict[str, str]:
        """Serialize using the engine's field names, omitting empty values."""
        data = {
            "username": self.username,
            "password": self.password,
            "auth": self.auth,
            "email": self.email,
            "serveraddress": self.server_address,
            "identitytoken": self.identity_token,
            "registrytoken": self.registry_token,
        }
        return {key: value for key, value in data.items() if value}


@dataclass(frozen=True)
class PluginPrivilege:
    """A privilege requested by a plugin."""

    name: str
    description: str = ""
    value: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PluginPrivilege":
        return cls(
            name=data.get("Name", ""),
            description=data.get("Description", ""),
            value=tuple(data.get("Value") or ()),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "Name": self.name,
            "Description": self.description,
            "Value": list(self.value),
        }


AcceptPermissionsFunc = Callable[[list[PluginPrivilege]], Awaitable[bool]]
PrivilegeFunc = Callable[[], Awaitable[str]]


@dataclass(frozen=True)
class PluginInstallOptions:
    """Materialized plugin install request."""

    registry_auth: str
    remote_ref: str
    disabled: bool = False
    accept_all_permissions: bool = False
    accept_permissions: Optional[AcceptPermissionsFunc] = None
    privilege_func: Optional[PrivilegeFunc] = None
    args: tuple[str, ...] = ()


@dataclass
class CreateResponse:
    """Result of a container create call."""

    id: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class PushResult:
    """Aux record emitted by the engine at the end of a push."""

    tag: str
    digest: str
    size: int


@dataclass
class JSONMessage:
    """A single record of a streamed progress response."""

    status: str = ""
    id: str = ""
    progress: str = ""
    stream: str = ""
    error: str = ""
    aux: Optional[dict[str, Any]] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "JSONMessage":
        error = data.get("error", "")
        detail = data.get("errorDetail")
        if not error and isinstance(detail, dict):
            error = detail.get("message", "")
        return cls(
            status=data.get("status", ""),
            id=data.get("id", ""),
            progress=data.get("progress", ""),
            stream=data.get("stream", ""),
            error=error,
            aux=data.get("aux"),
        )


@dataclass(frozen=True)
class SignedTarget:
    """A (name, digest) pair attested by a trust role."""

    name: str
    digest: str
    size: int
    role: str


@dataclass
class TrustTagRow:
    """A released tag with the signers that also attested it."""

    signed_tag: str
    digest: str
    signers: list[str] = field(default_factory=list)


@dataclass
class Task:
    """Subset of a swarm task used for listing."""

    id: str
    service_id: str
    node_id: str
    slot: int
    image: str
    desired_state: str
    state: str
    error: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Task":
        status = data.get("Status") or {}
        spec = data.get("Spec") or {}
        container_spec = spec.get("ContainerSpec") or {}
        return cls(
            id=data.get("ID", ""),
            service_id=data.get("ServiceID", ""),
            node_id=data.get("NodeID", ""),
            slot=data.get("Slot", 0),
            image=container_spec.get("Image", ""),
            desired_state=data.get("DesiredState", ""),
            state=status.get("State", ""),
            error=status.get("Err", ""),
        )

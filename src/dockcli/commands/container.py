"""``container create``: pull policy, content trust and the CID file."""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TextIO, Tuple

from ..archive import single_file_tar
from ..cidfile import CIDFile
from ..command import CommandContext
from ..core.jsonstream import display_json_messages
from ..credentials import ConfigFile, get_all_credentials, retrieve_auth_token_from_image
from ..exceptions import (
    AuthEncodingError,
    CredentialHelperError,
    InvalidArgumentError,
    NotFoundError,
    RemoteOperationError,
)
from ..reference import familiar_string, parse_any_reference, tag_name_only
from ..trust.resolver import TrustedReference, tag_trusted, trusted_reference
from ..utils.units import ram_in_bytes
from ..utils.versions import greater_than_or_equal_to

logger = logging.getLogger(__name__)

PULL_IMAGE_ALWAYS = "always"
PULL_IMAGE_MISSING = "missing"
PULL_IMAGE_NEVER = "never"

PLATFORM_MIN_API_VERSION = "1.41"
ENGINE_SOCKET = "/var/run/docker.sock"
CONTAINER_CONFIG_DIR = "/docker/"
CONTAINER_CONFIG_FILE = "/docker/config.json"

_LOCALHOST_IP = re.compile(r"((127\.([0-9]{1,3}\.){2}[0-9]{1,3})|(::1)$)")
_PLATFORM = re.compile(r"^[A-Za-z0-9_-]+(?:/[A-Za-z0-9_.-]+){0,2}$")


@dataclass
class CreateOptions:
    """Flags and arguments of ``container create``."""

    image: str
    command: List[str] = field(default_factory=list)
    name: str = ""
    pull: str = PULL_IMAGE_MISSING
    quiet: bool = False
    platform: str = ""
    untrusted: bool = True
    cidfile: str = ""
    env: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    memory: str = ""
    dns: List[str] = field(default_factory=list)
    oom_kill_disable: bool = False
    entrypoint: Optional[str] = None
    workdir: str = ""
    user: str = ""
    tty: bool = False
    interactive: bool = False
    volumes: List[str] = field(default_factory=list)
    use_docker_socket: bool = False


@dataclass
class ContainerConfig:
    """Request bodies for the create call."""

    config: Dict[str, Any]
    host_config: Dict[str, Any]
    networking_config: Dict[str, Any] = field(default_factory=dict)


def validate_pull_opt(value: str) -> None:
    """Reject unknown pull policies.

    Raises:
        InvalidArgumentError: If value is not always, missing, never or empty
    """
    if value in (PULL_IMAGE_ALWAYS, PULL_IMAGE_MISSING, PULL_IMAGE_NEVER, ""):
        return
    raise InvalidArgumentError(
        f"invalid pull option: '{value}': must be one of "
        f'"{PULL_IMAGE_ALWAYS}", "{PULL_IMAGE_MISSING}" or "{PULL_IMAGE_NEVER}"'
    )


def is_localhost(ip: str) -> bool:
    return _LOCALHOST_IP.search(ip) is not None


def warn_on_oom_kill_disable(host_config: Dict[str, Any], err: TextIO) -> None:
    if host_config.get("OomKillDisable") and not host_config.get("Memory"):
        err.write(
            "WARNING: Disabling the OOM killer on containers without setting a "
            "'-m/--memory' limit may be dangerous.\n"
        )


def warn_on_localhost_dns(host_config: Dict[str, Any], err: TextIO) -> None:
    for dns_ip in host_config.get("Dns") or []:
        if is_localhost(dns_ip):
            err.write(f"WARNING: Localhost DNS setting (--dns={dns_ip}) may fail in containers.\n")
            return


def kv_strings_to_map_with_nil(values: List[str]) -> Dict[str, Optional[str]]:
    """Split "KEY=VALUE" strings; a bare "KEY" maps to None."""
    result: Dict[str, Optional[str]] = {}
    for item in values:
        key, sep, value = item.partition("=")
        result[key] = value if sep else None
    return result


def _env_list(env: Dict[str, Optional[str]]) -> List[str]:
    items = []
    for key, value in env.items():
        if not key:
            raise InvalidArgumentError(f"invalid environment variable: ={value or ''}")
        if value is None:
            # Take the value from the client environment when it is set there
            host_value = os.environ.get(key)
            items.append(key if host_value is None else f"{key}={host_value}")
        else:
            items.append(f"{key}={value}")
    return items


def _split_volumes(volumes: List[str]) -> Tuple[List[str], Dict[str, Dict]]:
    binds: List[str] = []
    anonymous: Dict[str, Dict] = {}
    for spec in volumes:
        if not spec:
            raise InvalidArgumentError("invalid empty volume spec")
        if ":" in spec:
            binds.append(spec)
        else:
            anonymous[spec] = {}
    return binds, anonymous


def parse_container_config(
    options: CreateOptions, env: Dict[str, Optional[str]]
) -> ContainerConfig:
    """Translate flags into the engine's create request.

    Args:
        options: Parsed command-line options
        env: Container environment after proxy settings were merged in

    Raises:
        InvalidArgumentError: If a flag value is malformed
    """
    memory = 0
    if options.memory:
        try:
            memory = ram_in_bytes(options.memory)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

    labels = {}
    for label in options.labels:
        key, _, value = label.partition("=")
        if not key:
            raise InvalidArgumentError(f"invalid label format: {label}")
        labels[key] = value

    binds, anonymous = _split_volumes(options.volumes)

    config: Dict[str, Any] = {
        "Image": options.image,
        "Env": _env_list(env),
        "Labels": labels,
        "Tty": options.tty,
        "OpenStdin": options.interactive,
        "StdinOnce": options.interactive,
        "AttachStdin": options.interactive,
        "AttachStdout": True,
        "AttachStderr": True,
    }
    if options.command:
        config["Cmd"] = list(options.command)
    if options.entrypoint is not None:
        config["Entrypoint"] = [options.entrypoint]
    if options.workdir:
        config["WorkingDir"] = options.workdir
    if options.user:
        config["User"] = options.user
    if anonymous:
        config["Volumes"] = anonymous

    host_config: Dict[str, Any] = {
        "Binds": binds,
        "Memory": memory,
        "Dns": list(options.dns),
        "OomKillDisable": options.oom_kill_disable,
        "ContainerIDFile": options.cidfile,
    }
    return ContainerConfig(config=config, host_config=host_config)


async def pull_image(ctx: CommandContext, client, image: str, options: CreateOptions) -> None:
    """Pull image, rendering progress on stderr unless quiet."""
    encoded_auth = await retrieve_auth_token_from_image(ctx.config, image, ctx.creds_store)
    stream = await client.image_create(image, encoded_auth, options.platform)
    async with stream:
        await display_json_messages(stream, None if options.quiet else ctx.err)


async def copy_config_into_container(
    client, container_id: str, path: str, config: ConfigFile
) -> None:
    """Write a config.json holding only the given credentials into a container."""
    content = json.dumps(config.to_dict(), indent="\t").encode("utf-8")
    archive = single_file_tar(path, content, mode=0o600)
    try:
        await client.copy_to_container(container_id, "/", archive)
    except RemoteOperationError as e:
        raise RemoteOperationError(
            f"copying config.json into container failed: {e}", status=e.status
        ) from e


def _validate_platform(platform: str) -> str:
    if not _PLATFORM.match(platform):
        raise InvalidArgumentError(f"error parsing specified platform: {platform!r}")
    return platform.lower()


async def create_container(
    ctx: CommandContext, client, container: ContainerConfig, options: CreateOptions
) -> str:
    """Create the container, pulling the image according to the pull policy.

    Under the default policy a not-found failure triggers exactly one
    pull-and-tag followed by exactly one more create attempt.

    Returns:
        The new container ID

    Raises:
        CIDFileError: If the CID file exists or cannot be written
        NoTrustDataError: If content trust is on and the tag is unsigned
        NotFoundError: If the image is missing and not pulled (or still missing)
        TagRestoreError: If re-tagging a trusted pull fails
    """
    config = container.config
    host_config = container.host_config

    warn_on_oom_kill_disable(host_config, ctx.err)
    warn_on_localhost_dns(host_config, ctx.err)

    async with CIDFile(host_config.get("ContainerIDFile", "")) as cid_file:
        ref = parse_any_reference(config["Image"])
        named_ref = tag_name_only(ref) if ref.is_named else None
        trusted: Optional[TrustedReference] = None
        if named_ref is not None and named_ref.is_tagged:
            resolved = await trusted_reference(
                named_ref, options.untrusted, ctx.trust_repository
            )
            if isinstance(resolved, TrustedReference):
                trusted = resolved
                config["Image"] = str(trusted)

        async def pull_and_tag() -> None:
            await pull_image(ctx, client, config["Image"], options)
            if trusted is not None:
                await tag_trusted(client, trusted, ctx.err)

        if options.use_docker_socket:
            host_config["Binds"] = list(host_config.get("Binds") or []) + [
                f"{ENGINE_SOCKET}:{ENGINE_SOCKET}"
            ]
            config["Env"] = list(config.get("Env") or []) + [
                f"DOCKER_CONFIG={CONTAINER_CONFIG_DIR}"
            ]

        platform = None
        if options.platform and greater_than_or_equal_to(
            client.api_version, PLATFORM_MIN_API_VERSION
        ):
            platform = _validate_platform(options.platform)

        if options.pull == PULL_IMAGE_ALWAYS:
            await pull_and_tag()

        async def create():
            return await client.container_create(
                config,
                host_config,
                container.networking_config,
                platform=platform,
                name=options.name,
            )

        try:
            response = await create()
        except NotFoundError:
            if named_ref is None or options.pull not in (PULL_IMAGE_MISSING, ""):
                raise
            if not options.quiet:
                ctx.err.write(f"Unable to find image '{familiar_string(named_ref)}' locally\n")
            logger.debug("image %s missing, pulling before retry", config["Image"])
            await pull_and_tag()
            response = await create()

        for warning in response.warnings:
            ctx.err.write(f"WARNING: {warning}\n")
        await cid_file.write(response.id)

        if options.use_docker_socket:
            try:
                credentials = await get_all_credentials(ctx.config, ctx.creds_store)
            except CredentialHelperError as e:
                raise AuthEncodingError(f"resolving credentials failed: {e}") from e
            await copy_config_into_container(
                client, response.id, CONTAINER_CONFIG_FILE, ConfigFile(auths=credentials)
            )

    return response.id


async def run_create(ctx: CommandContext, options: CreateOptions) -> str:
    """Validate the flags, create the container and print its ID.

    Raises:
        InvalidArgumentError: For an invalid pull policy or flag value,
            before the engine is contacted
    """
    try:
        validate_pull_opt(options.pull)
    except InvalidArgumentError as e:
        raise InvalidArgumentError(f"{e}\nSee 'dockcli create --help'.") from e

    env = ctx.config.parse_proxy_config(
        ctx.settings.host, kv_strings_to_map_with_nil(options.env)
    )
    container = parse_container_config(options, env)

    async with ctx.client() as client:
        container_id = await create_container(ctx, client, container, options)
    ctx.out.write(container_id + "\n")
    return container_id

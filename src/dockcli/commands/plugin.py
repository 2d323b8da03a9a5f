"""``plugin install``, ``create``, ``push`` and ``rm``."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..archive import tar_directory
from ..command import CommandContext
from ..core.engine_client import PLUGIN_NAME_HEADER
from ..core.jsonstream import display_json_messages
from ..core.types import PluginInstallOptions
from ..credentials import (
    encode_auth_config,
    registry_authentication_privileged_func,
    resolve_auth_config,
)
from ..exceptions import InvalidArgumentError, RemoteOperationError
from ..reference import familiar_string, parse_normalized_named, tag_name_only
from ..trust.signer import PushResultCollector, sign_and_publish
from ..trust.resolver import trusted_reference

logger = logging.getLogger(__name__)

IMAGE_FETCH_MARKER = "(image) when fetching"
IMAGE_PULL_HINT = ' - Use "docker image pull"'


@dataclass
class PluginOptions:
    """Flags and arguments shared by the plugin pull commands."""

    remote: str
    local_name: str = ""
    grant_perms: bool = False
    disable: bool = False
    args: List[str] = field(default_factory=list)
    untrusted: bool = True


async def build_pull_config(
    ctx: CommandContext, options: PluginOptions, cmd_name: str
) -> PluginInstallOptions:
    """Resolve the remote reference and assemble the install request.

    Credentials are encoded before the trust server or the engine is
    contacted, so an encoding failure never leaves a partial request behind.
    A reference with both tag and digest is pulled by digest.

    Raises:
        InvalidReferenceError: If the remote name is malformed
        AuthEncodingError: If the credentials cannot be resolved or encoded
        NoTrustDataError: If content trust is on and the tag is unsigned
    """
    ref = parse_normalized_named(options.remote)

    auth = await resolve_auth_config(ctx.config, ref.index_name, ctx.creds_store)
    encoded_auth = encode_auth_config(auth)

    remote = str(ref)
    if not options.untrusted and not ref.is_canonical:
        tagged = tag_name_only(ref)
        if not tagged.is_tagged:
            raise InvalidArgumentError(f"invalid name: {tagged}")
        trusted = await trusted_reference(tagged, False, ctx.trust_repository)
        remote = str(trusted)

    accept_permissions = None
    if not options.grant_perms:
        accept_permissions = ctx.privilege_channel().accept_func(options.remote)

    return PluginInstallOptions(
        registry_auth=encoded_auth,
        remote_ref=remote,
        disabled=options.disable,
        accept_all_permissions=options.grant_perms,
        accept_permissions=accept_permissions,
        privilege_func=registry_authentication_privileged_func(
            ctx.config, ctx.prompter, ref.index_name, cmd_name, ctx.creds_store
        ),
        args=tuple(options.args),
    )


def _with_image_hint(error: RemoteOperationError) -> RemoteOperationError:
    if IMAGE_FETCH_MARKER in str(error):
        return RemoteOperationError(f"{error}{IMAGE_PULL_HINT}", status=error.status)
    return error


async def run_install(ctx: CommandContext, options: PluginOptions) -> bool:
    """Install a plugin, enabling it unless asked not to.

    Returns:
        False if the requested privileges were declined, True otherwise

    Raises:
        InvalidArgumentError: If the alias is malformed or digest-qualified
        RemoteOperationError: If the engine fails; an image-instead-of-plugin
            failure carries a hint to use the image pull command
    """
    local_name = ""
    if options.local_name:
        alias = parse_normalized_named(options.local_name)
        if alias.is_canonical:
            raise InvalidArgumentError(f"invalid name: {options.local_name}")
        local_name = familiar_string(tag_name_only(alias))

    install_options = await build_pull_config(ctx, options, "plugin install")

    async with ctx.client() as client:
        try:
            stream = await client.plugin_install(local_name, install_options)
            if stream is None:
                return False
            async with stream:
                name = stream.headers.get(PLUGIN_NAME_HEADER, "") or local_name
                await display_json_messages(stream, ctx.out)
        except RemoteOperationError as e:
            hinted = _with_image_hint(e)
            if hinted is e:
                raise
            raise hinted from e

        if not name:
            name = familiar_string(tag_name_only(parse_normalized_named(options.remote)))
        if install_options.args:
            await client.plugin_set(name, list(install_options.args))
        if not install_options.disabled:
            await client.plugin_enable(name, timeout=0)

    ctx.out.write(f"Installed plugin {options.remote}\n")
    return True


def validate_context_dir(context_dir: str) -> Path:
    path = Path(context_dir).absolute()
    if not path.is_dir():
        raise InvalidArgumentError("context must be a directory")
    return path


def validate_config(context_dir: Path) -> None:
    """Check that config.json exists and is a JSON object.

    Raises:
        InvalidArgumentError: If the file is missing or malformed
    """
    config_path = context_dir / "config.json"
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise InvalidArgumentError(f"open {config_path}: no such file or directory") from e
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidArgumentError(f"invalid plugin config {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidArgumentError(f"invalid plugin config {config_path}")


async def run_create(
    ctx: CommandContext, repo_name: str, context_dir: str, compress: bool = False
) -> None:
    """Create a plugin from a directory holding config.json and rootfs."""
    parse_normalized_named(repo_name)
    path = validate_context_dir(context_dir)
    validate_config(path)

    if compress:
        logger.debug("compression enabled")
    archive = await tar_directory(path, compress=compress)

    async with ctx.client() as client:
        await client.plugin_create(repo_name, archive)
    ctx.out.write(repo_name + "\n")


async def run_push(ctx: CommandContext, name: str, untrusted: bool) -> None:
    """Push a plugin, signing the pushed tag when content trust is on.

    Raises:
        InvalidArgumentError: If the name is digest-qualified
    """
    named = parse_normalized_named(name)
    if named.is_canonical:
        raise InvalidArgumentError(f"invalid name: {name}")
    named = tag_name_only(named)

    auth = await resolve_auth_config(ctx.config, named.index_name, ctx.creds_store)
    encoded_auth = encode_auth_config(auth)

    collector = PushResultCollector()
    async with ctx.client() as client:
        stream = await client.plugin_push(familiar_string(named), encoded_auth)
        async with stream:
            await display_json_messages(stream, ctx.out, aux_callback=collector)

    if untrusted:
        return
    repository = await ctx.trust_repository(named.trim_name())
    signer = await ctx.notary_signer(named.trim_name())
    await sign_and_publish(signer, repository, collector.result, named.tag, ctx.out)


async def run_remove(ctx: CommandContext, names: List[str], force: bool = False) -> None:
    """Remove plugins, continuing past failures and reporting them together.

    Raises:
        RemoteOperationError: Listing every failure, if any
    """
    errors: List[str] = []
    async with ctx.client() as client:
        for name in names:
            try:
                await client.plugin_remove(name, force=force)
            except RemoteOperationError as e:
                errors.append(str(e))
                continue
            ctx.out.write(name + "\n")
    if errors:
        raise RemoteOperationError("\n".join(errors))


def plugin_untrusted(ctx: CommandContext, disable_content_trust: bool) -> bool:
    return disable_content_trust or not ctx.content_trust_enabled


def parse_plugin_options(
    ctx: CommandContext,
    plugin: str,
    args: Optional[List[str]],
    alias: str,
    grant_all_permissions: bool,
    disable: bool,
    disable_content_trust: bool,
) -> PluginOptions:
    return PluginOptions(
        remote=plugin,
        local_name=alias,
        grant_perms=grant_all_permissions,
        disable=disable,
        args=list(args or []),
        untrusted=plugin_untrusted(ctx, disable_content_trust),
    )

"""Per-invocation state shared by every command."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional, TextIO

import aiohttp

from .config import DEFAULT_CONTEXT, ClientSettings
from .core.engine_client import EngineClient
from .core.session import USER_AGENT
from .credentials import detect_default_store, load_config_file, resolve_auth_config
from .credentials.configfile import ConfigFile
from .prompt import PrivilegeChannel, Prompter, Responder, TerminalPrivilegePrompt
from .reference import Reference
from .trust.notary import NotaryRepository, trust_server
from .trust.resolver import RepositoryFactory, TrustRepository
from .trust.signer import NotarySigner, notary_environment

logger = logging.getLogger(__name__)

SignerFactory = Callable[[Reference], Awaitable[NotarySigner]]


@dataclass
class CommandContext:
    """Settings, configuration and collaborators for one command invocation.

    The engine client, trust repository, signer and privilege responder can
    be replaced by passing factories, which is how the tests drive commands
    without a daemon or notary server.
    """

    settings: ClientSettings
    config: ConfigFile
    out: TextIO = field(default_factory=lambda: sys.stdout)
    err: TextIO = field(default_factory=lambda: sys.stderr)
    prompter: Optional[Prompter] = None
    creds_store: str = ""
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    client_factory: Optional[Callable[[], EngineClient]] = None
    repository_factory: Optional[RepositoryFactory] = None
    signer_factory: Optional[SignerFactory] = None
    privilege_responder: Optional[Responder] = None
    _trust_session: Optional[aiohttp.ClientSession] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.prompter is None:
            self.prompter = Prompter(sys.stdin, self.out)

    @classmethod
    async def load(
        cls,
        settings: ClientSettings,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        in_stream: Optional[TextIO] = None,
    ) -> "CommandContext":
        """Read the configuration file and resolve the default credential store."""
        config = await load_config_file(settings.config_file)
        out = out or sys.stdout
        return cls(
            settings=settings,
            config=config,
            out=out,
            err=err or sys.stderr,
            prompter=Prompter(in_stream or sys.stdin, out),
            creds_store=detect_default_store(config.creds_store),
        )

    @property
    def content_trust_enabled(self) -> bool:
        return self.settings.content_trust

    @property
    def current_context(self) -> str:
        return self.settings.context or self.config.current_context or DEFAULT_CONTEXT

    def client(self) -> EngineClient:
        """Engine client to be used as an async context manager."""
        if self.client_factory is not None:
            return self.client_factory()
        return EngineClient(self.settings.engine_config(), cancelled=self.cancelled)

    def privilege_channel(self) -> PrivilegeChannel:
        responder = self.privilege_responder or TerminalPrivilegePrompt(self.prompter)
        return PrivilegeChannel(responder)

    async def trust_repository(self, ref: Reference) -> TrustRepository:
        """Open the trust data for the repository a reference names."""
        if self.repository_factory is not None:
            return await self.repository_factory(ref)
        server = trust_server(ref.index_name, self.settings.content_trust_server)
        auth = await resolve_auth_config(self.config, ref.index_name, self.creds_store)
        if self._trust_session is None:
            self._trust_session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        logger.debug("trust server for %s is %s", ref.name, server)
        return NotaryRepository(server, ref.name, self.settings.trust_dir, self._trust_session, auth)

    async def notary_signer(self, ref: Reference) -> NotarySigner:
        if self.signer_factory is not None:
            return await self.signer_factory(ref)
        server = trust_server(ref.index_name, self.settings.content_trust_server)
        auth = await resolve_auth_config(self.config, ref.index_name, self.creds_store)
        return NotarySigner(server, ref.name, self.settings.trust_dir, env=notary_environment(auth))

    async def close(self) -> None:
        if self._trust_session is not None and not self._trust_session.closed:
            await self._trust_session.close()
        self._trust_session = None

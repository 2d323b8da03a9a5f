"""Interactive prompts and the plugin privilege negotiation.

Privilege acceptance is modelled as an explicit state machine. The install
driver creates a :class:`PrivilegeRequest` through a :class:`PrivilegeChannel`;
the responder on the other end of the channel (a terminal prompt in the CLI,
a scripted answer in tests) moves it from ``AWAITING`` to ``GRANTED`` or
``DECLINED`` exactly once.
"""

import asyncio
import getpass
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TextIO

from .core.types import AcceptPermissionsFunc, PluginPrivilege

logger = logging.getLogger(__name__)


async def read_in_background(func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking terminal read on a daemon thread.

    Cancelling the awaiting task abandons the read. The thread is never
    joined, so a read that never returns does not hold up loop shutdown
    or interpreter exit.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def deliver(result: Any = None, error: Optional[BaseException] = None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker() -> None:
        try:
            result = func(*args)
        except Exception as e:
            outcome = (None, e)
        else:
            outcome = (result, None)
        try:
            loop.call_soon_threadsafe(deliver, *outcome)
        except RuntimeError:
            # Loop already closed: the read was abandoned.
            logger.debug("discarding terminal input read after loop shutdown")

    threading.Thread(target=worker, name="dockcli-input", daemon=True).start()
    return await future


class Prompter:
    """Reads answers from the interactive input stream."""

    def __init__(self, in_stream: TextIO, out_stream: TextIO) -> None:
        self.in_stream = in_stream
        self.out = out_stream

    async def read_line(self, message: str) -> str:
        """Print message and wait until a line is read (EOF gives "")."""
        self.out.write(message)
        self.out.flush()
        line = await read_in_background(self.in_stream.readline)
        return line.rstrip("\r\n")

    async def read_secret(self, message: str) -> str:
        if self.in_stream.isatty():
            return await read_in_background(getpass.getpass, message, self.out)
        return await self.read_line(message)


async def prompt_for_confirmation(prompter: Prompter, message: str) -> bool:
    """Ask a yes/no question; only "y" (any case) confirms."""
    answer = await prompter.read_line(f"{message} [y/N] ")
    return answer.strip().lower() == "y"


class PrivilegeState(str, Enum):
    AWAITING = "awaiting"
    GRANTED = "granted"
    DECLINED = "declined"


@dataclass
class PrivilegeRequest:
    """A pending decision on the privileges requested by a plugin."""

    plugin: str
    privileges: tuple[PluginPrivilege, ...]
    state: PrivilegeState = field(default=PrivilegeState.AWAITING)

    def _decide(self, state: PrivilegeState) -> None:
        if self.state is not PrivilegeState.AWAITING:
            raise RuntimeError(f"privilege request for {self.plugin} already {self.state.value}")
        self.state = state

    def grant(self) -> None:
        self._decide(PrivilegeState.GRANTED)

    def decline(self) -> None:
        self._decide(PrivilegeState.DECLINED)


Responder = Callable[[PrivilegeRequest], Awaitable[None]]


class PrivilegeChannel:
    """Passes privilege requests from the install driver to a responder."""

    def __init__(self, responder: Responder) -> None:
        self._responder = responder
        self.requests: list[PrivilegeRequest] = []

    async def ask(self, plugin: str, privileges: Sequence[PluginPrivilege]) -> bool:
        """Send a request and wait for the decision.

        A responder that returns without deciding counts as a decline.
        """
        request = PrivilegeRequest(plugin=plugin, privileges=tuple(privileges))
        self.requests.append(request)
        await self._responder(request)
        if request.state is PrivilegeState.AWAITING:
            request.decline()
        logger.debug("privileges for %s %s", plugin, request.state.value)
        return request.state is PrivilegeState.GRANTED

    def accept_func(self, plugin: str) -> AcceptPermissionsFunc:
        async def accept(privileges: list[PluginPrivilege]) -> bool:
            return await self.ask(plugin, privileges)

        return accept


def format_privilege_value(value: Sequence[str]) -> str:
    return "[" + " ".join(value) + "]"


class TerminalPrivilegePrompt:
    """Responder that lists the privileges and asks the user to confirm."""

    def __init__(self, prompter: Prompter) -> None:
        self.prompter = prompter

    async def __call__(self, request: PrivilegeRequest) -> None:
        out = self.prompter.out
        out.write(f'Plugin "{request.plugin}" is requesting the following privileges:\n')
        for privilege in request.privileges:
            out.write(f" - {privilege.name}: {format_privilege_value(privilege.value)}\n")
        if await prompt_for_confirmation(self.prompter, "Do you grant the above permissions?"):
            request.grant()
        else:
            request.decline()

"""Signing pushed content by driving the notary command-line tool."""

import asyncio
import base64
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, TextIO

from ..core.types import AuthConfig, JSONMessage, PushResult
from ..exceptions import NoTrustDataError, RemoteOperationError, TrustVerificationError
from ..utils.digest import digest_hex
from .resolver import TrustRepository

logger = logging.getLogger(__name__)

NOTARY_PROGRAM = "notary"

# Passphrase variables understood by this client and their notary names
PASSPHRASE_ENV = {
    "DOCKER_CONTENT_TRUST_ROOT_PASSPHRASE": ("NOTARY_ROOT_PASSPHRASE",),
    "DOCKER_CONTENT_TRUST_REPOSITORY_PASSPHRASE": (
        "NOTARY_TARGETS_PASSPHRASE",
        "NOTARY_SNAPSHOT_PASSPHRASE",
    ),
}


def notary_environment(
    auth: Optional[AuthConfig] = None, base: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Environment for the notary process with passphrases and credentials mapped."""
    env = dict(os.environ if base is None else base)
    for source, targets in PASSPHRASE_ENV.items():
        value = env.get(source)
        if not value:
            continue
        for target in targets:
            env.setdefault(target, value)
    if auth and auth.username:
        raw = f"{auth.username}:{auth.password}".encode("utf-8")
        env["NOTARY_AUTH"] = base64.b64encode(raw).decode("ascii")
    return env


class PushResultCollector:
    """Aux callback that remembers the push result reported by the engine."""

    def __init__(self) -> None:
        self.result: Optional[PushResult] = None

    def __call__(self, msg: JSONMessage) -> None:
        aux = msg.aux or {}
        if "Digest" not in aux:
            return
        self.result = PushResult(
            tag=aux.get("Tag", ""),
            digest=aux.get("Digest", ""),
            size=int(aux.get("Size", 0)),
        )


class NotarySigner:
    """Adds targets to a GUN's trust data and publishes it."""

    def __init__(
        self,
        server_url: str,
        gun: str,
        trust_dir: Path,
        env: Optional[Dict[str, str]] = None,
        program: str = NOTARY_PROGRAM,
    ) -> None:
        self.server_url = server_url
        self.gun = gun
        self.trust_dir = trust_dir
        self.env = env
        self.program = program

    async def _run(self, *args: str) -> str:
        command: List[str] = [
            self.program,
            "-s",
            self.server_url,
            "-d",
            str(self.trust_dir),
            *args,
        ]
        logger.debug("running %s", " ".join(command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            raise RemoteOperationError(f"cannot run {self.program}: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TrustVerificationError(
                f"failed to sign {self.gun}: {message or f'{self.program} exited {proc.returncode}'}"
            )
        return stdout.decode("utf-8", errors="replace")

    async def initialize(self) -> None:
        await self._run("init", self.gun, "--publish")

    async def add_target(self, tag: str, digest: str, size: int) -> None:
        """Sign tag -> digest and publish the updated metadata.

        Raises:
            TrustVerificationError: If digest is not a sha256 digest or notary fails
        """
        try:
            hex_digest = digest_hex(digest)
        except ValueError as e:
            raise TrustVerificationError(f"cannot sign {self.gun}:{tag}: {e}") from e
        await self._run(
            "addhash",
            self.gun,
            tag,
            str(size),
            "--sha256",
            hex_digest,
            "--publish",
        )


async def sign_and_publish(
    signer: NotarySigner,
    repository: TrustRepository,
    result: Optional[PushResult],
    tag: str,
    out: TextIO,
) -> None:
    """Sign the pushed content once the engine reported its digest.

    Args:
        signer: Signer for the pushed repository
        repository: Current trust data, used to decide whether to initialize
        result: Push result collected from the progress stream
        tag: Tag that was pushed
        out: Output stream for status lines

    Raises:
        TrustVerificationError: If signing fails
        RemoteOperationError: If no push result was reported
    """
    if not tag:
        out.write("No tag specified, skipping trust metadata push\n")
        return
    if result is None:
        raise RemoteOperationError(
            "no targets found, please provide a specific tag in order to sign it"
        )

    out.write("Signing and pushing trust metadata\n")
    out.flush()
    try:
        await repository.list_roles()
    except NoTrustDataError:
        logger.info("initializing trust data for %s", signer.gun)
        await signer.initialize()
    await signer.add_target(result.tag or tag, result.digest, result.size)
    out.write(f"Successfully signed {signer.gun}:{result.tag or tag}\n")

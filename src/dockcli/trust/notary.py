"""Read-only client for trust metadata published on a notary server."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiohttp

from ..core.types import AuthConfig, SignedTarget
from ..exceptions import (
    InvalidArgumentError,
    NoTrustDataError,
    RemoteOperationError,
    TrustVerificationError,
)
from ..reference import DEFAULT_DOMAIN
from ..utils.digest import digest_from_hashes
from .verify import verify_role

logger = logging.getLogger(__name__)

OFFICIAL_NOTARY_SERVER = "https://notary.docker.io"
ROOT_ROLE = "root"
TARGETS_ROLE = "targets"
RELEASES_ROLE = "targets/releases"

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def trust_server(index_name: str, configured: str = "") -> str:
    """Notary server URL for a registry host.

    Raises:
        InvalidArgumentError: If a configured server is not an https URL
    """
    if configured:
        if not configured.startswith("https://"):
            raise InvalidArgumentError(
                f"valid https URL required for trust server, got {configured}"
            )
        return configured.rstrip("/")
    if index_name in (DEFAULT_DOMAIN, "index.docker.io"):
        return OFFICIAL_NOTARY_SERVER
    return f"https://{index_name}"


def parse_bearer_challenge(header: str) -> Dict[str, str]:
    """Parse a 'Bearer realm="...",service="...",scope="..."' header."""
    scheme, _, params = header.partition(" ")
    if scheme.lower() != "bearer":
        return {}
    return dict(_CHALLENGE_PARAM.findall(params))


class NotaryRepository:
    """Verified view of the trust data for one globally unique name (GUN).

    ``root.json`` is pinned under the local trust directory the first time it
    is seen; later roots must be signed by the pinned root keys. Targets and
    delegation metadata are only returned after their signatures, thresholds
    and expiry have been checked.
    """

    def __init__(
        self,
        server_url: str,
        gun: str,
        trust_dir: Path,
        session: aiohttp.ClientSession,
        auth: Optional[AuthConfig] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.gun = gun
        self.trust_dir = trust_dir
        self.session = session
        self.auth = auth
        self.now = now
        self._token: Optional[str] = None
        self._root: Optional[Dict[str, Any]] = None
        self._targets: Optional[Dict[str, Any]] = None

    @property
    def metadata_dir(self) -> Path:
        return self.trust_dir / "tuf" / self.gun / "metadata"

    def _role_url(self, role: str) -> str:
        return f"{self.server_url}/v2/{self.gun}/_trust/tuf/{role}.json"

    async def _fetch_token(self, challenge: Dict[str, str]) -> str:
        realm = challenge.get("realm")
        if not realm:
            raise RemoteOperationError("error contacting notary server: missing auth realm")
        params = {key: challenge[key] for key in ("service", "scope") if key in challenge}
        basic = None
        if self.auth and self.auth.username:
            basic = aiohttp.BasicAuth(self.auth.username, self.auth.password)
        async with self.session.get(realm, params=params, auth=basic) as resp:
            if resp.status != 200:
                raise RemoteOperationError(
                    f"error contacting notary server: token request returned {resp.status}",
                    status=resp.status,
                )
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise RemoteOperationError(
                    f"error contacting notary server: invalid token response: {e}"
                ) from e
        if not isinstance(data, dict):
            raise RemoteOperationError("error contacting notary server: invalid token response")
        token = data.get("token") or data.get("access_token")
        if not token:
            raise RemoteOperationError("error contacting notary server: no token in response")
        return token

    async def _get(self, url: str) -> aiohttp.ClientResponse:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        resp = await self.session.get(url, headers=headers)
        if resp.status == 401 and self._token is None:
            challenge = parse_bearer_challenge(resp.headers.get("WWW-Authenticate", ""))
            resp.release()
            if not challenge:
                raise RemoteOperationError("error contacting notary server: unauthorized", 401)
            self._token = await self._fetch_token(challenge)
            resp = await self.session.get(url, headers={"Authorization": f"Bearer {self._token}"})
        return resp

    async def fetch_role(self, role: str) -> Optional[Dict[str, Any]]:
        """Download a role's metadata; None when the server has none.

        Raises:
            RemoteOperationError: On network or server errors
        """
        url = self._role_url(role)
        logger.debug("fetching trust metadata %s", url)
        try:
            resp = await self._get(url)
            try:
                if resp.status == 404:
                    return None
                if resp.status >= 400:
                    raise RemoteOperationError(
                        f"error contacting notary server: {resp.status} for {role}",
                        status=resp.status,
                    )
                text = await resp.text()
            finally:
                resp.release()
        except aiohttp.ClientError as e:
            raise RemoteOperationError(f"error contacting notary server: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TrustVerificationError(f"invalid {role} metadata: {e}") from e
        if not isinstance(data, dict):
            raise TrustVerificationError(f"invalid {role} metadata")
        return data

    async def _read_pinned_root(self) -> Optional[Dict[str, Any]]:
        path = self.metadata_dir / "root.json"
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise TrustVerificationError(f"corrupt pinned root metadata {path}: {e}") from e

    async def _pin_root(self, document: Dict[str, Any]) -> None:
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.metadata_dir / "root.json", "w", encoding="utf-8") as f:
            await f.write(json.dumps(document))

    def _no_trust_data(self) -> NoTrustDataError:
        server = self.server_url.split("://", 1)[-1]
        return NoTrustDataError(
            f"remote trust data does not exist for {self.gun}: "
            f"{server} does not have trust data for {self.gun}"
        )

    @staticmethod
    def _root_role(signed: Dict[str, Any], role: str) -> Dict[str, Any]:
        roles = signed.get("roles") or {}
        if role not in roles:
            raise TrustVerificationError(f"root metadata does not define the {role} role")
        return roles[role]

    def _verify_with_root(
        self, document: Dict[str, Any], root_signed: Dict[str, Any], role: str
    ) -> Dict[str, Any]:
        definition = self._root_role(root_signed, role)
        return verify_role(
            document,
            role,
            root_signed.get("keys") or {},
            definition.get("keyids") or [],
            int(definition.get("threshold", 1)),
            self.now,
        )

    async def load_root(self) -> Dict[str, Any]:
        """Fetch and verify root metadata against the pinned copy.

        Raises:
            NoTrustDataError: If the server has no trust data for the GUN
            TrustVerificationError: If the root cannot be verified
        """
        if self._root is not None:
            return self._root

        remote = await self.fetch_role(ROOT_ROLE)
        if remote is None:
            raise self._no_trust_data()

        pinned = await self._read_pinned_root()
        if pinned is None:
            # Trust on first use: the root must at least be self-consistent
            signed = self._verify_with_root(remote, remote.get("signed") or {}, ROOT_ROLE)
            logger.info("pinning root metadata for %s", self.gun)
            await self._pin_root(remote)
        else:
            pinned_signed = pinned.get("signed") or {}
            self._verify_with_root(remote, pinned_signed, ROOT_ROLE)
            signed = self._verify_with_root(remote, remote.get("signed") or {}, ROOT_ROLE)
            if signed.get("version", 0) < pinned_signed.get("version", 0):
                raise TrustVerificationError(
                    "warning: potential malicious behavior - trust data version is lower "
                    f"than expected for remote repository {self.gun}"
                )
            if signed.get("version", 0) > pinned_signed.get("version", 0):
                await self._pin_root(remote)

        self._root = signed
        return signed

    async def load_targets(self) -> Dict[str, Any]:
        """Fetch and verify the top-level targets metadata.

        Raises:
            NoTrustDataError: If trust data is missing on the server
            TrustVerificationError: If verification fails
        """
        if self._targets is not None:
            return self._targets
        root = await self.load_root()
        document = await self.fetch_role(TARGETS_ROLE)
        if document is None:
            raise NoTrustDataError(
                f"trust data missing for remote repository {self.gun} "
                "or remote repository not found"
            )
        self._targets = self._verify_with_root(document, root, TARGETS_ROLE)
        return self._targets

    def _delegations(self, targets: Dict[str, Any]) -> tuple[Dict[str, Any], List[Dict[str, Any]]]:
        delegations = targets.get("delegations") or {}
        return delegations.get("keys") or {}, delegations.get("roles") or []

    async def _load_delegation(
        self, role: Dict[str, Any], keys: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        name = role.get("name", "")
        document = await self.fetch_role(name)
        if document is None:
            return None
        return verify_role(
            document,
            name,
            keys,
            role.get("keyids") or [],
            int(role.get("threshold", 1)),
            self.now,
        )

    @staticmethod
    def _matches_paths(role: Dict[str, Any], target_name: str) -> bool:
        paths = role.get("paths")
        if paths is None:
            return True
        return any(target_name.startswith(prefix) for prefix in paths)

    @staticmethod
    def _collect(signed: Dict[str, Any], role: str, name: str) -> List[SignedTarget]:
        found = []
        for target_name, meta in (signed.get("targets") or {}).items():
            if name and target_name != name:
                continue
            try:
                digest = digest_from_hashes(meta.get("hashes") or {})
            except ValueError as e:
                raise TrustVerificationError(f"target {target_name} in {role}: {e}") from e
            found.append(
                SignedTarget(
                    name=target_name,
                    digest=digest,
                    size=int(meta.get("length", 0)),
                    role=role,
                )
            )
        return found

    async def get_all_target_metadata_by_name(self, name: str = "") -> List[SignedTarget]:
        """Every verified signed target with the given name ("" for all).

        Targets from the top-level role come first, then delegations in the
        order the targets metadata lists them.
        """
        targets = await self.load_targets()
        results = self._collect(targets, TARGETS_ROLE, name)

        keys, roles = self._delegations(targets)
        for role in roles:
            if name and not self._matches_paths(role, name):
                continue
            signed = await self._load_delegation(role, keys)
            if signed is None:
                continue
            results.extend(
                target
                for target in self._collect(signed, role.get("name", ""), name)
                if self._matches_paths(role, target.name)
            )
        logger.debug("%d signed targets for %s:%s", len(results), self.gun, name or "*")
        return results

    async def list_roles(self) -> Dict[str, List[str]]:
        """Key IDs of the administrative roles and every delegation."""
        root = await self.load_root()
        targets = await self.load_targets()
        roles = {
            ROOT_ROLE: list(self._root_role(root, ROOT_ROLE).get("keyids") or []),
            TARGETS_ROLE: list(self._root_role(root, TARGETS_ROLE).get("keyids") or []),
        }
        _, delegations = self._delegations(targets)
        for role in delegations:
            roles[role.get("name", "")] = list(role.get("keyids") or [])
        return roles

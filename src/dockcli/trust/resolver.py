"""Digest pinning of tagged references through signed trust metadata."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Dict, List, Protocol, TextIO, Tuple, Union

from ..core.types import SignedTarget, TrustTagRow
from ..exceptions import NoTrustDataError, RemoteOperationError, TagRestoreError
from ..reference import Reference, familiar_string, tag_name_only
from ..utils.sortorder import natural_key
from .notary import RELEASES_ROLE, TARGETS_ROLE

logger = logging.getLogger(__name__)

RELEASED_ROLE_NAME = "Repo Admin"


class TrustRepository(Protocol):
    async def get_all_target_metadata_by_name(self, name: str = "") -> List[SignedTarget]: ...

    async def list_roles(self) -> Dict[str, List[str]]: ...


RepositoryFactory = Callable[[Reference], Awaitable[TrustRepository]]


@dataclass(frozen=True)
class TrustedReference:
    """A tagged reference pinned to the digest its signed target attests."""

    reference: Reference
    source_tag: str
    digest: str

    @property
    def pinned(self) -> Reference:
        return self.reference.with_digest(self.digest)

    @property
    def tagged(self) -> Reference:
        return self.reference.with_tag(self.source_tag)

    def __str__(self) -> str:
        return familiar_string(self.pinned)


def is_released_target(role: str) -> bool:
    return role in (TARGETS_ROLE, RELEASES_ROLE)


def select_release_target(targets: List[SignedTarget], tag: str) -> SignedTarget:
    """Pick the target for a tag, preferring the releases delegation.

    Raises:
        NoTrustDataError: If neither released role signed the tag
    """
    for role in (RELEASES_ROLE, TARGETS_ROLE):
        for target in targets:
            if target.name == tag and target.role == role:
                return target
    raise NoTrustDataError(f"No valid trust data for {tag}")


async def trusted_reference(
    ref: Reference, untrusted: bool, repository_factory: RepositoryFactory
) -> Union[Reference, TrustedReference]:
    """Resolve a reference to a digest through trust metadata.

    Args:
        ref: Parsed reference
        untrusted: Skip trust resolution entirely
        repository_factory: Opens the trust repository for a reference

    Returns:
        ref unchanged when untrusted, pinned or unnamed, otherwise a
        TrustedReference

    Raises:
        NoTrustDataError: If no signed target exists for the tag
        TrustVerificationError: If the metadata fails verification
    """
    if untrusted or ref.is_canonical or not ref.is_named:
        return ref

    tagged = tag_name_only(ref)
    repository = await repository_factory(tagged)
    targets = await repository.get_all_target_metadata_by_name(tagged.tag)
    target = select_release_target(targets, tagged.tag)
    logger.debug("trusted %s resolved to %s via %s", tagged, target.digest, target.role)
    return TrustedReference(
        reference=tagged.trim_name(),
        source_tag=tagged.tag,
        digest=target.digest,
    )


def notary_role_to_signer(role: str) -> str:
    if is_released_target(role):
        return RELEASED_ROLE_NAME
    return role[len("targets/") :] if role.startswith("targets/") else role


def match_released_signatures(targets: List[SignedTarget]) -> List[TrustTagRow]:
    """Group released targets with every other role that signed the same content.

    Only targets signed into ``targets`` or ``targets/releases`` produce a
    row. Rows come back in natural order of their tag name, so
    ``target2`` sorts before ``target10``.
    """
    released: Dict[Tuple[str, str], List[str]] = {}
    for target in targets:
        if is_released_target(target.role):
            released[(target.name, target.digest)] = []

    for target in targets:
        key = (target.name, target.digest)
        if key in released and not is_released_target(target.role):
            released[key].append(notary_role_to_signer(target.role))

    rows = [
        TrustTagRow(signed_tag=name, digest=digest, signers=sorted(signers))
        for (name, digest), signers in released.items()
    ]
    rows.sort(key=lambda row: natural_key(row.signed_tag))
    return rows


async def tag_trusted(client, trusted: TrustedReference, err: TextIO) -> None:
    """Re-associate the human-readable tag with the pulled digest.

    A failure here leaves the pull (and any container created from it) in
    place.

    Raises:
        TagRestoreError: If the engine refuses the tag
    """
    source = familiar_string(trusted.pinned)
    target = familiar_string(trusted.tagged)
    err.write(f"Tagging {source} as {target}\n")
    try:
        await client.image_tag(source, target)
    except RemoteOperationError as e:
        raise TagRestoreError(f"failed to tag {source} as {target}: {e}") from e

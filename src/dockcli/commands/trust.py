"""``trust inspect``: signed tags, signers and keys of a repository."""

import json
import logging
from typing import Any, Dict, List

from ..command import CommandContext
from ..reference import familiar_string, parse_normalized_named
from ..trust.notary import RELEASES_ROLE, ROOT_ROLE, TARGETS_ROLE
from ..trust.resolver import match_released_signatures, notary_role_to_signer
from ..utils.digest import digest_hex
from ..utils.sortorder import natural_key

logger = logging.getLogger(__name__)


def _keys(key_ids: List[str]) -> List[Dict[str, str]]:
    return [{"ID": key_id} for key_id in sorted(key_ids)]


async def inspect_repository(ctx: CommandContext, name: str) -> Dict[str, Any]:
    """Collect the trust information for one repository or tag.

    Raises:
        NoTrustDataError: If the repository has no trust data
        TrustVerificationError: If the trust data fails verification
    """
    ref = parse_normalized_named(name)
    repository = await ctx.trust_repository(ref.trim_name())
    targets = await repository.get_all_target_metadata_by_name(ref.tag)
    roles = await repository.list_roles()

    rows = match_released_signatures(targets)
    signers = [
        {"Name": notary_role_to_signer(role), "Keys": _keys(key_ids)}
        for role, key_ids in roles.items()
        if role not in (ROOT_ROLE, TARGETS_ROLE, RELEASES_ROLE)
    ]
    signers.sort(key=lambda signer: natural_key(signer["Name"]))

    return {
        "Name": familiar_string(ref),
        "SignedTags": [
            {
                "SignedTag": row.signed_tag,
                "Digest": digest_hex(row.digest),
                "Signers": row.signers,
            }
            for row in rows
        ],
        "Signers": signers,
        "AdministrativeKeys": [
            {"Name": "Root", "Keys": _keys(roles.get(ROOT_ROLE, []))},
            {"Name": "Repository", "Keys": _keys(roles.get(TARGETS_ROLE, []))},
        ],
    }


async def run_inspect(ctx: CommandContext, names: List[str]) -> List[Dict[str, Any]]:
    """Print the trust information for each name as a JSON array."""
    results = []
    for name in names:
        results.append(await inspect_repository(ctx, name))
    ctx.out.write(json.dumps(results, indent=4) + "\n")
    return results

"""Image and plugin reference parsing.

References follow the ``[domain/]path[:tag][@digest]`` grammar used by
container registries. Short ("familiar") names are normalized against the
default index, so ``busybox`` becomes ``docker.io/library/busybox``.
"""

import re
from dataclasses import dataclass, replace

from .exceptions import InvalidReferenceError
from .utils.digest import validate_digest

DEFAULT_DOMAIN = "docker.io"
LEGACY_DEFAULT_DOMAIN = "index.docker.io"
OFFICIAL_REPO_PREFIX = "library/"
DEFAULT_TAG = "latest"
NAME_TOTAL_LENGTH_MAX = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_NAME = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
_IPV6 = r"\[(?:[a-fA-F0-9:]+)\]"
_DOMAIN = rf"(?:{_DOMAIN_NAME}|{_IPV6})(?::[0-9]+)?"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"

REFERENCE_PATTERN = re.compile(rf"^({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?$")
IDENTIFIER_PATTERN = re.compile(r"^[a-f0-9]{64}$")


@dataclass(frozen=True)
class Reference:
    """A parsed image or plugin reference.

    An unnamed reference (empty ``path``) carries only a digest and is
    produced when an image ID is given instead of a name.
    """

    domain: str
    path: str
    tag: str = ""
    digest: str = ""

    @property
    def name(self) -> str:
        if not self.path:
            return ""
        return f"{self.domain}/{self.path}"

    @property
    def is_named(self) -> bool:
        return bool(self.path)

    @property
    def is_tagged(self) -> bool:
        return bool(self.tag)

    @property
    def is_canonical(self) -> bool:
        """Whether the reference is pinned to a digest."""
        return self.is_named and bool(self.digest)

    @property
    def index_name(self) -> str:
        """Registry host used for credential and trust server lookup."""
        return self.domain

    @property
    def familiar_name(self) -> str:
        if self.domain == DEFAULT_DOMAIN:
            remainder = self.path
            if remainder.startswith(OFFICIAL_REPO_PREFIX):
                short = remainder[len(OFFICIAL_REPO_PREFIX) :]
                if "/" not in short:
                    remainder = short
            return remainder
        return self.name

    def with_tag(self, tag: str) -> "Reference":
        return replace(self, tag=tag, digest="")

    def with_digest(self, digest: str) -> "Reference":
        return replace(self, tag="", digest=digest)

    def trim_name(self) -> "Reference":
        """Drop tag and digest, keeping the repository name only."""
        return replace(self, tag="", digest="")

    def __str__(self) -> str:
        if not self.is_named:
            return self.digest
        return self.name + _suffix(self)


def _suffix(ref: Reference) -> str:
    suffix = ""
    if ref.tag:
        suffix += f":{ref.tag}"
    if ref.digest:
        suffix += f"@{ref.digest}"
    return suffix


def familiar_string(ref: Reference) -> str:
    """Render a reference in its short, user-facing form."""
    if not ref.is_named:
        return ref.digest
    return ref.familiar_name + _suffix(ref)


def _split_domain(name: str) -> tuple[str, str]:
    i = name.find("/")
    first = name[:i] if i != -1 else ""
    if i == -1 or (
        not any(ch in first for ch in ".:")
        and first != "localhost"
        and first.lower() == first
    ):
        domain, remainder = DEFAULT_DOMAIN, name
    else:
        domain, remainder = first, name[i + 1 :]

    if domain == LEGACY_DEFAULT_DOMAIN:
        domain = DEFAULT_DOMAIN
    if domain == DEFAULT_DOMAIN and "/" not in remainder:
        remainder = OFFICIAL_REPO_PREFIX + remainder
    return domain, remainder


def parse(value: str) -> Reference:
    """Parse a fully qualified reference string without normalization.

    Raises:
        InvalidReferenceError: If the string is not a valid reference
    """
    match = REFERENCE_PATTERN.match(value)
    if match is None:
        if not value:
            raise InvalidReferenceError("repository name must have at least one component")
        raise InvalidReferenceError(f"invalid reference format: {value}")

    name, tag, digest = match.group(1), match.group(2) or "", match.group(3) or ""
    if len(name) > NAME_TOTAL_LENGTH_MAX:
        raise InvalidReferenceError(
            f"repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters"
        )
    if digest and not validate_digest(digest):
        raise InvalidReferenceError(f"invalid digest format: {digest}")

    domain, _, path = name.partition("/")
    if not path:
        domain, path = "", name
    return Reference(domain=domain, path=path, tag=tag, digest=digest)


def parse_normalized_named(value: str) -> Reference:
    """Parse a user-supplied name, expanding familiar forms.

    Args:
        value: Reference such as "busybox", "myorg/app:1.0" or
            "registry:5000/plugin@sha256:..."

    Returns:
        Normalized Reference

    Raises:
        InvalidReferenceError: If the name is malformed or uppercase
    """
    if IDENTIFIER_PATTERN.match(value):
        raise InvalidReferenceError(
            f"invalid repository name ({value}), cannot specify 64-byte hexadecimal strings"
        )

    domain, remainder = _split_domain(value)
    remote_name = remainder.split("@", 1)[0].split(":", 1)[0]
    if remote_name.lower() != remote_name:
        raise InvalidReferenceError(
            f"invalid reference format: repository name ({remote_name}) must be lowercase"
        )

    ref = parse(f"{domain}/{remainder}")
    if not ref.domain:
        raise InvalidReferenceError(f"invalid reference format: {value}")
    return ref


def parse_any_reference(value: str) -> Reference:
    """Parse a name or a bare image ID / digest.

    Raises:
        InvalidReferenceError: If the value is neither
    """
    if IDENTIFIER_PATTERN.match(value):
        return Reference(domain="", path="", digest=f"sha256:{value}")
    if validate_digest(value):
        return Reference(domain="", path="", digest=value)
    return parse_normalized_named(value)


def tag_name_only(ref: Reference) -> Reference:
    """Apply the default tag unless the reference is tagged or pinned."""
    if ref.is_named and not ref.tag and not ref.digest:
        return ref.with_tag(DEFAULT_TAG)
    return ref

"""Identity normalization shared by provenance collection and policy evaluation."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from pear_reviewer.audit.types import Identity
from pear_reviewer.git.types import Signature

_NAME_EMAIL = re.compile(r"^\s*(?P<name>.*?)\s*<(?P<email>[^<>]*)>\s*$")
_GITHUB_NOREPLY = re.compile(r"^(?:\d+\+)?(?P<login>[^@+]+)@users\.noreply\.github\.com$", re.IGNORECASE)


def normalize_handle(value: str) -> str:
    """Fold case and surrounding whitespace; the only comparison key for identities."""
    return " ".join(value.split()).casefold()


def identity_from_signature(signature: Signature, aliases: Mapping[str, str] | None = None) -> Identity:
    """Build an identity from a commit author/committer field."""
    handle = signature.email.strip() or signature.name.strip()
    noreply = _GITHUB_NOREPLY.match(handle)
    if noreply:
        handle = noreply.group("login")
    return apply_alias(Identity(name=signature.name.strip(), handle=handle), aliases)


def parse_identity(value: str, aliases: Mapping[str, str] | None = None) -> Identity | None:
    """Parse a trailer value (``Name <email>`` or a bare handle)."""
    text = value.strip()
    if not text:
        return None
    match = _NAME_EMAIL.match(text)
    if match:
        return identity_from_signature(
            Signature(name=match.group("name"), email=match.group("email")),
            aliases,
        )
    handle = text.lstrip("@")
    return apply_alias(Identity(name=handle, handle=handle), aliases)


def apply_alias(identity: Identity, aliases: Mapping[str, str] | None) -> Identity:
    if not aliases:
        return identity
    target = aliases.get(identity.key)
    if target is None:
        return identity
    return Identity(name=identity.name, handle=target)


def resolve_bare_handle(identity: Identity, known: Iterable[tuple[Signature, Identity]]) -> Identity:
    """Map a bare handle (``bob``) onto a known author identity.

    A bare handle matches an author whose name, email, or email local part
    folds to the same value. Ambiguous matches leave the identity unchanged.
    """
    if "@" in identity.handle:
        return identity
    token = identity.key
    matches: set[Identity] = set()
    for signature, candidate in known:
        email = normalize_handle(signature.email)
        local = email.split("@", 1)[0] if email else ""
        if token in {normalize_handle(signature.name), email, local, candidate.key}:
            matches.add(candidate)
    if len(matches) == 1:
        resolved = next(iter(matches))
        return Identity(name=identity.name, handle=resolved.handle)
    return identity


def normalize_aliases(raw: Mapping[str, str]) -> dict[str, str]:
    """Normalize alias keys so lookups use the identity comparison key."""
    return {normalize_handle(key): value.strip() for key, value in raw.items() if key.strip() and value.strip()}

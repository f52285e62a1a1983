"""
Fingerprint hasher: FingerprintInput → CacheKey.

Fields are serialised in a fixed order as a JSON array, so the key never
depends on dict ordering, and JSON string escaping keeps ["a,b"] distinct
from ["a", "b"].  The digest is BLAKE2b truncated to 80 bits, rendered in
base36.  This is a cache key, not a security boundary.
"""

import hashlib
import json

from recipe_cache.normalizer import FingerprintInput

KEY_PREFIX = "recipe_"
_DIGEST_BYTES = 10
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def canonical_form(fp: FingerprintInput) -> str:
    """Field-ordered serialisation fed to the hash."""
    return json.dumps(
        [
            fp.prompt_text,
            fp.skill_level,
            list(fp.dietary_restrictions),
            list(fp.allergies),
            list(fp.kitchen_tools),
            fp.preferences_blob,
        ],
        ensure_ascii=True,
        separators=(",", ":"),
    )


def fingerprint_key(fp: FingerprintInput) -> str:
    digest = hashlib.blake2b(
        canonical_form(fp).encode("utf-8"), digest_size=_DIGEST_BYTES
    ).digest()
    return KEY_PREFIX + _base36(int.from_bytes(digest, "big"))

"""Metadata token derivation.

The token seeds rustc's symbol hashes (``-C metadata``) and suffixes every
library file name (``-C extra-filename``), so differently configured builds
of the same crate and version can coexist in one program and one store.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence

METADATA_TOKEN_LENGTH = 10


def canonical_features(features: Iterable[str]) -> str:
    return ",".join(sorted(set(features)))


def metadata_token(
    name: str,
    version: str,
    features: Iterable[str],
    dependency_tokens: Sequence[str],
) -> str:
    payload = (
        f"{name}-{version}"
        f"___{canonical_features(features)}"
        f"___{''.join(dependency_tokens)}"
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return digest[:METADATA_TOKEN_LENGTH]

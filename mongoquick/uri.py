"""Connection string helpers for callers building profiles."""

from __future__ import annotations

import re

SCHEMES = ("mongodb://", "mongodb+srv://")
SRV_HOST_SUFFIXES = (".mongodb.net", ".mongo.ondigitalocean.com")

_CREDENTIALS = re.compile(r"://([^:@/]+):([^@]+)@")


def has_valid_scheme(uri: str) -> bool:
    return uri.startswith(SCHEMES)


def normalize_uri(text: str) -> str:
    """Turn bare ``host:port`` input into a connection string."""

    uri = text.strip()
    if has_valid_scheme(uri):
        return uri
    if any(suffix in uri for suffix in SRV_HOST_SUFFIXES):
        return f"mongodb+srv://{uri}"
    return f"mongodb://{uri}"


def mask_uri(uri: str) -> str:
    """Hide the password component, keeping the user name visible."""

    return _CREDENTIALS.sub(r"://\1:***@", uri, count=1)


def detect_environment(name: str, uri: str) -> str:
    """Guess a deployment environment from the profile name and URI."""

    haystacks = (name.lower(), uri.lower())
    for environment, markers in (
        ("production", ("prod",)),
        ("staging", ("stag",)),
        ("development", ("dev",)),
    ):
        if any(marker in text for text in haystacks for marker in markers):
            return environment
    if "localhost" in haystacks[1] or "127.0.0.1" in haystacks[1]:
        return "local"
    return "unknown"


__all__ = ["SCHEMES", "detect_environment", "has_valid_scheme", "mask_uri", "normalize_uri"]

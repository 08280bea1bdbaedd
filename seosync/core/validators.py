"""Input normalisation helpers for tenant domains and ids."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)


class DomainValidationError(ValueError):
    """Raised when a tenant domain cannot be used as a provider target."""


def normalize_domain(domain: Optional[str]) -> str:
    """Strip protocol, leading www. and a trailing slash, then lowercase."""

    if domain is None:
        raise DomainValidationError("Domain is required")
    cleaned = _PROTOCOL_RE.sub("", domain.strip())
    cleaned = _WWW_RE.sub("", cleaned)
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    cleaned = cleaned.lower()
    if not cleaned:
        raise DomainValidationError(f"Domain {domain!r} is empty after normalisation")
    return cleaned


def normalize_tenant_ids(values: Iterable[str] | None) -> List[str]:
    if not values:
        return []
    seen: List[str] = []
    for value in values:
        for part in str(value).replace("\n", ",").split(","):
            part = part.strip()
            if part and part not in seen:
                seen.append(part)
    return seen


__all__ = ["DomainValidationError", "normalize_domain", "normalize_tenant_ids"]

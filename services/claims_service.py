from __future__ import annotations

import logging
from typing import Any

from services.identity_provider import IdentityProvider, UserNotFoundError

CLAIM_ROLE = "role"
CLAIM_CLUB_ID = "clubId"
CLAIM_SUPER_ADMIN = "super_admin"

ROLE_CLAIM_KEYS = (CLAIM_ROLE, CLAIM_CLUB_ID)


def get_claims(uid: str, *, provider: IdentityProvider) -> dict[str, Any]:
    return dict(provider.get_user(uid).custom_claims)


def set_claims(uid: str, patch: dict[str, Any], *, provider: IdentityProvider) -> dict[str, Any]:
    """
    Merge `patch` into the identity's existing claims and persist the result.

    Holders of an already-issued credential keep seeing the old claims until the
    credential is refreshed.
    """
    merged = get_claims(uid, provider=provider)
    merged.update(patch)
    provider.set_custom_claims(uid, merged)
    return merged


def clear_role_claims(uid: str, *, provider: IdentityProvider) -> dict[str, Any]:
    claims = get_claims(uid, provider=provider)
    for key in ROLE_CLAIM_KEYS:
        claims.pop(key, None)
    provider.set_custom_claims(uid, claims)
    return claims


def grant_club_admin(
    uid: str,
    club_id: str,
    *,
    provider: IdentityProvider,
    attempts: int = 3,
) -> dict[str, Any]:
    """
    Grant {role: admin, clubId} claims. Claims are written last in every mutation, so
    transient provider failures are retried before giving up.
    """
    patch = {CLAIM_ROLE: "admin", CLAIM_CLUB_ID: club_id}
    attempts = max(1, attempts)
    for attempt in range(1, attempts):
        try:
            return set_claims(uid, patch, provider=provider)
        except UserNotFoundError:
            raise
        except Exception as exc:
            logging.warning(
                "event=claims_write_failed uid=%s club=%s attempt=%s/%s",
                uid,
                club_id,
                attempt,
                attempts,
                exc_info=exc,
            )
    return set_claims(uid, patch, provider=provider)

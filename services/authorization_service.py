from __future__ import annotations

import logging

from pymongo.collection import Collection

from services.claims_service import CLAIM_CLUB_ID, CLAIM_ROLE, CLAIM_SUPER_ADMIN
from services.error_reporting_service import capture_exception
from services.identity_provider import IdentityProvider, UserNotFoundError
from services.session_service import CallerIdentity
from utils.errors import PermissionDenied
from utils.validation import ROLE_ADMIN, ROLE_SUPER


def _claims_grant_super(uid: str, provider: IdentityProvider) -> bool:
    try:
        claims = provider.get_user(uid).custom_claims
    except UserNotFoundError:
        return False
    except Exception as exc:
        logging.warning("event=super_check_failed source=claims uid=%s", uid, exc_info=exc)
        capture_exception(exc, tags={"check": "super_admin_claims"})
        return False
    return bool(claims.get(CLAIM_SUPER_ADMIN))


def _profile_grants_super(uid: str, users: Collection) -> bool:
    try:
        doc = users.find_one({"_id": uid}, {"role": 1})
    except Exception as exc:
        logging.warning("event=super_check_failed source=profile uid=%s", uid, exc_info=exc)
        capture_exception(exc, tags={"check": "super_admin_profile"})
        return False
    return bool(doc) and doc.get("role") == ROLE_SUPER


def is_super_admin(uid: str, *, provider: IdentityProvider, users: Collection) -> bool:
    """
    Decide whether `uid` holds super-admin privilege. Never raises.

    The identity's claims are consulted first, the `users` profile role second. A
    failing lookup counts as "not super"; the failure itself goes to logging and error
    reporting, not into the decision.
    """
    if not uid:
        return False
    if _claims_grant_super(uid, provider):
        return True
    return _profile_grants_super(uid, users)


def require_super_admin(
    caller: CallerIdentity,
    *,
    provider: IdentityProvider,
    users: Collection,
    message: str = "Only super admins can perform this action",
) -> None:
    if not is_super_admin(caller.uid, provider=provider, users=users):
        raise PermissionDenied(message)


def is_club_admin(caller: CallerIdentity, club_id: str) -> bool:
    claims = caller.claims
    return claims.get(CLAIM_ROLE) == ROLE_ADMIN and claims.get(CLAIM_CLUB_ID) == club_id


def can_manage_club(
    caller: CallerIdentity,
    club_id: str,
    *,
    provider: IdentityProvider,
    users: Collection,
) -> bool:
    if is_club_admin(caller, club_id):
        return True
    return is_super_admin(caller.uid, provider=provider, users=users)

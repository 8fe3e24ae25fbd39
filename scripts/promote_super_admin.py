"""
Grant or revoke super-admin privilege for an existing identity.

Usage:
  python -m scripts.promote_super_admin --email coach@example.com
  python -m scripts.promote_super_admin --uid abc123 --revoke
"""
from __future__ import annotations

import argparse
import logging

from config import load_settings
from database import AUTH_USERS_COLLECTION, USERS_COLLECTION, get_collection
from services.claims_service import CLAIM_SUPER_ADMIN, set_claims
from services.identity_provider import IdentityProvider, MongoIdentityProvider, UserNotFoundError
from utils.redaction import redact_email
from utils.time_utils import utc_now
from utils.validation import ROLE_ATHLETE, ROLE_SUPER


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Promote (or demote) a PeakLog super admin.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--uid", help="Identity uid.")
    target.add_argument("--email", help="Identity e-mail address.")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Remove super-admin privilege instead of granting it.",
    )
    return parser.parse_args(argv)


def promote(uid: str, *, provider: IdentityProvider, users, revoke: bool = False) -> dict:
    claims = set_claims(uid, {CLAIM_SUPER_ADMIN: not revoke}, provider=provider)
    if revoke:
        users.update_one(
            {"_id": uid, "role": ROLE_SUPER},
            {"$set": {"role": ROLE_ATHLETE, "updated_at": utc_now()}},
        )
    else:
        users.update_one(
            {"_id": uid},
            {
                "$set": {"role": ROLE_SUPER, "updated_at": utc_now()},
                "$setOnInsert": {"created_at": utc_now()},
            },
            upsert=True,
        )
    return claims


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = _parse_args(argv)
    settings = load_settings()
    provider = MongoIdentityProvider(get_collection(settings, name=AUTH_USERS_COLLECTION))
    users = get_collection(settings, name=USERS_COLLECTION)

    try:
        user = provider.get_user(args.uid) if args.uid else provider.get_user_by_email(args.email)
    except UserNotFoundError as exc:
        raise SystemExit(str(exc)) from None

    promote(user.uid, provider=provider, users=users, revoke=args.revoke)
    logging.info(
        "Super admin %s for uid=%s email=%s. Existing sessions see the change after refresh.",
        "revoked" if args.revoke else "granted",
        user.uid,
        redact_email(user.email),
    )


if __name__ == "__main__":
    main()

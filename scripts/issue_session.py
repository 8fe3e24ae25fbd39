"""
Issue a bearer session for an identity.

Usage:
  python -m scripts.issue_session --email athlete@example.com
  python -m scripts.issue_session --email newcoach@example.com --create
  python -m scripts.issue_session --uid abc123 --ttl-seconds 600

The token is printed on stdout; send it as `Authorization: Bearer <token>`.
"""
from __future__ import annotations

import argparse
import logging

from pymongo.collection import Collection

from config import load_settings
from database import AUTH_SESSIONS_COLLECTION, AUTH_USERS_COLLECTION, get_collection
from services.identity_provider import (
    IdentityProvider,
    IdentityRecord,
    MongoIdentityProvider,
    UserNotFoundError,
)
from services.session_service import issue_session
from utils.errors import PermissionDenied
from utils.redaction import redact_email
from utils.validation import is_valid_email, normalize_email


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Issue a PeakLog bearer session.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--uid", help="Identity uid.")
    target.add_argument("--email", help="Identity e-mail address.")
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create a verified identity for --email when none exists.",
    )
    parser.add_argument(
        "--ttl-seconds",
        type=int,
        default=None,
        help="Session lifetime (defaults to SESSION_TTL_SECONDS).",
    )
    return parser.parse_args(argv)


def _resolve_identity(
    *, uid: str | None, email: str | None, provider: IdentityProvider, create: bool
) -> IdentityRecord:
    if uid:
        return provider.get_user(uid)
    norm = normalize_email(email)
    if not is_valid_email(norm):
        raise ValueError(f"Not a valid e-mail address: {email!r}")
    try:
        return provider.get_user_by_email(norm)
    except UserNotFoundError:
        if not create:
            raise
    user = provider.create_user(email=norm, email_verified=True)
    logging.info("event=identity_created uid=%s email=%s", user.uid, redact_email(norm))
    return user


def sign_in(
    *,
    provider: IdentityProvider,
    sessions: Collection,
    ttl_seconds: int,
    uid: str | None = None,
    email: str | None = None,
    create: bool = False,
) -> str:
    """
    Look up (or, with `create`, provision) the identity and return a fresh session token.
    Disabled identities raise PermissionDenied.
    """
    user = _resolve_identity(uid=uid, email=email, provider=provider, create=create)
    token = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=ttl_seconds)
    logging.info("event=session_issued uid=%s email=%s", user.uid, redact_email(user.email))
    return token


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = _parse_args(argv)
    settings = load_settings()
    ttl_seconds = args.ttl_seconds or settings.session_ttl_seconds
    if ttl_seconds <= 0:
        raise SystemExit("--ttl-seconds must be positive.")

    provider = MongoIdentityProvider(get_collection(settings, name=AUTH_USERS_COLLECTION))
    sessions = get_collection(settings, name=AUTH_SESSIONS_COLLECTION)
    try:
        token = sign_in(
            provider=provider,
            sessions=sessions,
            ttl_seconds=ttl_seconds,
            uid=args.uid,
            email=args.email,
            create=args.create,
        )
    except (UserNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from None
    except PermissionDenied as exc:
        raise SystemExit(exc.message) from None
    print(token)


if __name__ == "__main__":
    main()

from __future__ import annotations

import mongomock

from scripts.promote_super_admin import promote
from services.authorization_service import is_super_admin
from services.identity_provider import MongoIdentityProvider


def test_promote_and_revoke_super_admin() -> None:
    db = mongomock.MongoClient(tz_aware=True)["testdb"]
    provider = MongoIdentityProvider(db["auth_users"])
    users = db["users"]
    user = provider.create_user(email="coach@example.com")
    provider.set_custom_claims(user.uid, {"role": "admin", "clubId": "C1"})

    claims = promote(user.uid, provider=provider, users=users)

    assert claims == {"role": "admin", "clubId": "C1", "super_admin": True}
    assert users.find_one({"_id": user.uid})["role"] == "super"
    assert is_super_admin(user.uid, provider=provider, users=users) is True

    promote(user.uid, provider=provider, users=users, revoke=True)

    assert provider.get_user(user.uid).custom_claims["super_admin"] is False
    assert users.find_one({"_id": user.uid})["role"] == "athlete"
    assert is_super_admin(user.uid, provider=provider, users=users) is False

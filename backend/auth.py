import logging

from .client import BackendAuthError, auth_get_user, rest_get
from .serializers import AuthUserSerializer, ParentProfileSerializer, decode

logger = logging.getLogger(__name__)


def verify_parent(access_token: str) -> dict:
    """Resolve an access token to the parent profile behind it.

    Raises ``BackendAuthError`` when the token is rejected or the account has
    no parent profile, ``BackendError`` when the backend cannot answer.
    """
    account = decode(
        AuthUserSerializer, auth_get_user(access_token), label="auth user"
    ).validated_data
    rows = rest_get(
        access_token,
        "profiles",
        params={
            "select": "id,user_id,first_name,last_name,phone",
            "user_id": f"eq.{account['id']}",
            "role": "eq.parent",
        },
    )
    profiles = decode(ParentProfileSerializer, rows, many=True, label="profiles").validated_data
    if not profiles:
        logger.warning("Sign-in without a parent profile: user_id=%s", account["id"])
        raise BackendAuthError("Parent profile not found")
    profile = profiles[0]
    return {
        "email": account["email"],
        "parent_id": profile["id"],
        "first_name": profile["first_name"],
        "last_name": profile["last_name"],
        "phone": profile["phone"] or "",
    }

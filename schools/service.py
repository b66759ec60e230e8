import logging
from django.conf import settings
from backend.client import BackendError, rest_get, rest_patch
from backend.serializers import ProfileSchoolSerializer, SchoolSerializer, decode

logger = logging.getLogger(__name__)


def get_available_schools(access_token: str):
    """Approved, verified schools a parent may pick, ordered by name."""
    rows = rest_get(
        access_token,
        "schools",
        params={
            "select": "*",
            "status": "eq.approved",
            "verification_status": "eq.verified",
            "order": "name",
        },
    )
    ser = decode(SchoolSerializer, rows, many=True, label="schools")
    logger.info("Fetched %d schools", len(ser.data))
    return list(ser.data)


def _parent_profile_filter(profile_id: str):
    return {"id": f"eq.{profile_id}", "role": "eq.parent"}


def select_school(access_token: str, profile_id: str, school_id: str):
    rest_patch(
        access_token,
        "profiles",
        _parent_profile_filter(profile_id),
        {"school_id": school_id or None},
    )
    logger.info("Parent %s selected school %s", profile_id, school_id or "(none)")


def get_selected_school(access_token: str, profile_id: str):
    try:
        rows = rest_get(
            access_token,
            "profiles",
            params={"select": "school_id", **_parent_profile_filter(profile_id)},
        )
        profiles = decode(ProfileSchoolSerializer, rows, many=True, label="profiles").validated_data
        school_id = profiles[0]["school_id"] if profiles else None
        if not school_id:
            logger.info("No school selected for parent %s", profile_id)
            return None
        rows = rest_get(
            access_token, "schools", params={"select": "*", "id": f"eq.{school_id}"}
        )
        schools = decode(SchoolSerializer, rows, many=True, label="schools").data
    except BackendError as e:
        logger.warning("Fetching selected school failed for %s: %s", profile_id, str(e))
        return None
    return schools[0] if schools else None


def refresh_schools(session, force: bool = False):
    cache = session.cache
    return cache.refresh_or_load(
        settings.SCHOOLS_MAX_AGE_MINUTES,
        lambda: get_available_schools(session.access_token),
        cache.get_schools,
        cache.save_schools,
        force=force,
    )

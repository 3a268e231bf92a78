# artisan profile reconciliation and user profile edits
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from db.errors import ConflictError, NotFoundError, ValidationError
from db.models import ARTISAN_LIST_FIELDS, ArtisanProfile, Profile
from db.store import Store
from utils.logger import get_logger

_logger = get_logger(__name__)

# form field names used by the onboarding and settings pages
FIELD_ALIASES = {
    "contact_email": "email",
    "contact_phone": "phone",
    "website_url": "website",
}

ARTISAN_UPDATABLE_FIELDS = frozenset(
    {
        "shop_name",
        "description",
        "specialties",
        "location",
        "business_license",
        "phone",
        "email",
        "website",
        "established_year",
        "experience_years",
        "verification_status",
        "status",
        "banner_image",
        "shop_logo",
        "social_media",
        "business_hours",
        "portfolio_images",
        "certificates",
        "awards",
        "delivery_info",
        "payment_methods",
        "return_policy",
        "shipping_policy",
        "preferred_language",
        "notification_preferences",
    }
)

PROFILE_UPDATABLE_FIELDS = frozenset(
    {"first_name", "last_name", "phone", "avatar_url", "date_of_birth", "address"}
)

_NEW_PROFILE_DEFAULTS: Dict[str, Any] = {
    "verification_status": "pending",
    "status": "active",
    "commission_rate": Decimal("10.00"),
    "total_sales": Decimal("0.00"),
    "total_orders": 0,
}


def normalize_artisan_updates(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map form aliases onto column names and keep only fields a caller may set.

    An explicit column name wins over its alias when both are supplied.
    """
    fields: Dict[str, Any] = {}
    ignored = []
    for key, value in updates.items():
        column = FIELD_ALIASES.get(key, key)
        if column not in ARTISAN_UPDATABLE_FIELDS:
            ignored.append(key)
            continue
        if key != column and column in updates:
            continue
        fields[column] = value
    if ignored:
        _logger.debug(f"Ignoring artisan profile fields: {sorted(ignored)}")

    for name in ARTISAN_LIST_FIELDS:
        if name in fields and fields[name] is None:
            fields[name] = []
    for name in ("verification_status", "status"):
        if name in fields and fields[name] is None:
            del fields[name]
    if "shop_name" in fields:
        shop_name = fields["shop_name"]
        if shop_name is None:
            del fields["shop_name"]
        elif not isinstance(shop_name, str) or not shop_name.strip():
            raise ValidationError(
                "shop_name must be a non-empty string",
                [{"field": "shop_name", "message": "must not be blank"}],
            )
        else:
            fields["shop_name"] = shop_name.strip()
    return fields


async def _default_shop_name(store: Store, user_id: str) -> str:
    profile = await store.get_profile(user_id)
    if profile is None:
        raise NotFoundError(
            f"No profile for user {user_id}; a shop_name is required to create an artisan profile"
        )
    return f"{profile.first_name} {profile.last_name}'s Shop"


async def _new_profile_row(
    store: Store, user_id: str, fields: Mapping[str, Any]
) -> Dict[str, Any]:
    row: Dict[str, Any] = {name: None for name in ARTISAN_UPDATABLE_FIELDS}
    for name in ARTISAN_LIST_FIELDS:
        row[name] = []
    row.update(_NEW_PROFILE_DEFAULTS)
    row.update(fields)
    row["user_id"] = user_id
    if not row.get("shop_name"):
        row["shop_name"] = await _default_shop_name(store, user_id)
    return row


async def _apply_updates(
    store: Store, current: ArtisanProfile, fields: Mapping[str, Any]
) -> ArtisanProfile:
    if not fields:
        return current
    updated = await store.update_artisan_profile(current.user_id, fields)
    if updated is None:
        raise NotFoundError(f"Artisan profile for user {current.user_id} disappeared")
    return updated


async def reconcile_artisan_profile(
    store: Store, user_id: str, updates: Mapping[str, Any]
) -> ArtisanProfile:
    """
    Bring the artisan profile of ``user_id`` in line with ``updates``.

    Creates the profile on first submission and patches only the supplied
    fields afterwards, so repeating the same call leaves a single row in the
    same state. ``user_id`` must come from the authenticated caller; any
    identity keys in ``updates`` are discarded.
    """
    fields = normalize_artisan_updates(updates)
    existing = await store.find_artisan_profile(user_id)
    if existing is not None:
        _logger.info(f"Updating artisan profile of user {user_id} ({len(fields)} fields)")
        return await _apply_updates(store, existing, fields)

    row = await _new_profile_row(store, user_id, fields)
    try:
        created = await store.insert_artisan_profile(row)
    except ConflictError as exc:
        # another request created the row between our read and insert
        _logger.warning(
            f"Artisan profile of user {user_id} was created concurrently; updating instead"
        )
        current = await store.find_artisan_profile(user_id)
        if current is None:
            raise ConflictError(
                f"Could not reconcile artisan profile of user {user_id}", exc.constraint
            ) from exc
        try:
            return await _apply_updates(store, current, fields)
        except NotFoundError:
            raise ConflictError(
                f"Could not reconcile artisan profile of user {user_id}", exc.constraint
            ) from exc
    _logger.info(f"Created artisan profile {created.id} for user {user_id}")
    return created


async def create_artisan_profile(
    store: Store, user_id: str, data: Mapping[str, Any]
) -> ArtisanProfile:
    """Onboarding create; ConflictError when the user already has a shop."""
    fields = normalize_artisan_updates(data)
    if await store.find_artisan_profile(user_id) is not None:
        raise ConflictError(
            f"User {user_id} already has an artisan profile", "artisan_profiles.user_id"
        )
    row = await _new_profile_row(store, user_id, fields)
    created = await store.insert_artisan_profile(row)
    _logger.info(f"Created artisan profile {created.id} for user {user_id}")
    return created


async def get_artisan_profile(store: Store, user_id: str) -> ArtisanProfile:
    profile = await store.find_artisan_profile(user_id)
    if profile is None:
        raise NotFoundError(f"User {user_id} has no artisan profile")
    return profile


async def get_user_profile(store: Store, user_id: str) -> Profile:
    profile = await store.get_profile(user_id)
    if profile is None:
        raise NotFoundError(f"Profile {user_id} not found")
    return profile


async def update_user_profile(
    store: Store, user_id: str, updates: Mapping[str, Any]
) -> Profile:
    """Patch the whitelisted Profile fields, keeping full_name in sync with the name parts."""
    current = await get_user_profile(store, user_id)
    fields = {k: v for k, v in updates.items() if k in PROFILE_UPDATABLE_FIELDS}
    if not fields:
        return current
    for name in ("first_name", "last_name"):
        if name in fields and (not isinstance(fields[name], str) or not fields[name].strip()):
            raise ValidationError(
                f"{name} must be a non-empty string",
                [{"field": name, "message": "must not be blank"}],
            )
    if "first_name" in fields or "last_name" in fields:
        first: Optional[str] = fields.get("first_name", current.first_name)
        last: Optional[str] = fields.get("last_name", current.last_name)
        fields["full_name"] = f"{first} {last}".strip()
    updated = await store.update_profile(user_id, fields)
    if updated is None:
        raise NotFoundError(f"Profile {user_id} not found")
    return updated

# Overview: Inventory location master data and the seeded system locations.

from __future__ import annotations

from flask import current_app

from ..errors import ConfigurationError, NotFoundError, StateError, ValidationError
from ..extensions import db
from ..models import InventoryLocation
from ..models.inventory import DEFAULT_USER_LOCATION, SYSTEM_LOCATIONS
from ..time_utils import utcnow
from .audit_service import append_entity_log
from .concurrency import lock_for_update, run_with_retry


def _live_locations():
    return db.session.query(InventoryLocation).filter(InventoryLocation.deleted_at.is_(None))


def get_location(location_id: int, *, lock: bool = False) -> InventoryLocation:
    query = _live_locations().filter(InventoryLocation.id == location_id)
    if lock:
        query = lock_for_update(query)
    location = query.first()
    if location is None:
        raise NotFoundError.for_entity("Location", location_id)
    return location


def get_system_location(name: str) -> InventoryLocation:
    """
    Look up a seeded system-use-only location by name.

    Raises:
        ConfigurationError: the location was never seeded (run `flask system init`)
    """
    location = (
        _live_locations()
        .filter(InventoryLocation.name == name, InventoryLocation.system_use_only.is_(True))
        .first()
    )
    if location is None:
        raise ConfigurationError(
            f"System location {name!r} not found",
            identifier="location_system_not_found",
            details={"name": name},
        )
    return location


def list_locations(include_system: bool = False) -> list[InventoryLocation]:
    """User-visible locations; system-use-only rows only when asked for."""
    query = _live_locations()
    if not include_system:
        query = query.filter(InventoryLocation.system_use_only.is_(False))
    return query.order_by(InventoryLocation.id.asc()).all()


def ensure_system_locations() -> list[InventoryLocation]:
    """
    Seed the system-use-only locations and one user-visible default "Stock".

    Safe to call repeatedly (idempotent).
    """
    def _op():
        created = []
        for name in SYSTEM_LOCATIONS:
            exists = (
                _live_locations()
                .filter(InventoryLocation.name == name, InventoryLocation.system_use_only.is_(True))
                .first()
            )
            if exists:
                continue
            location = InventoryLocation(
                name=name,
                default_location=False,
                system_use_only=True,
                can_be_removed=False,
            )
            db.session.add(location)
            created.append(location)

        has_user_location = _live_locations().filter(InventoryLocation.system_use_only.is_(False)).first()
        if has_user_location is None:
            location = InventoryLocation(
                name=DEFAULT_USER_LOCATION,
                default_location=True,
                system_use_only=False,
                can_be_removed=False,
            )
            db.session.add(location)
            created.append(location)

        db.session.commit()
        if created:
            current_app.logger.info("Seeded %d inventory locations", len(created))
        return created

    return run_with_retry(_op)


def _parse_name(name) -> str:
    clean = str(name or "").strip()
    if not clean:
        raise ValidationError("Location name is required", identifier="location_invalid_name")
    return clean


def _clear_default_location(except_id: int) -> None:
    others = lock_for_update(
        _live_locations().filter(
            InventoryLocation.default_location.is_(True),
            InventoryLocation.id != except_id,
        )
    ).all()
    for other in others:
        other.default_location = False


def create_location(name: str, *, default_location: bool = False, user_id: int | None = None) -> InventoryLocation:
    def _op():
        location = InventoryLocation(
            name=_parse_name(name),
            default_location=bool(default_location),
            system_use_only=False,
            can_be_removed=True,
        )
        db.session.add(location)
        db.session.flush()
        if location.default_location:
            _clear_default_location(location.id)

        append_entity_log(
            entity_type="location",
            entity_id=location.id,
            user_id=user_id,
            system_note=f"Created location {location.name}",
        )
        db.session.commit()
        return location

    return run_with_retry(_op)


def _require_user_location(location: InventoryLocation) -> None:
    if location.system_use_only:
        raise StateError(
            f"{location.name} is a system location",
            identifier="location_system_use_only",
        )


def rename_location(location_id: int, name: str, *, user_id: int | None = None) -> InventoryLocation:
    def _op():
        location = get_location(location_id, lock=True)
        _require_user_location(location)
        old_name = location.name
        location.name = _parse_name(name)

        append_entity_log(
            entity_type="location",
            entity_id=location.id,
            user_id=user_id,
            system_note=f"Renamed location {old_name} to {location.name}",
        )
        db.session.commit()
        return location

    return run_with_retry(_op)


def set_default_location(location_id: int, *, user_id: int | None = None) -> InventoryLocation:
    def _op():
        location = get_location(location_id, lock=True)
        _require_user_location(location)
        _clear_default_location(location.id)
        location.default_location = True

        append_entity_log(
            entity_type="location",
            entity_id=location.id,
            user_id=user_id,
            system_note=f"Set {location.name} as default location",
        )
        db.session.commit()
        current_app.logger.info("Default location set to %s (id=%s)", location.name, location.id)
        return location

    return run_with_retry(_op)


def find_default_location() -> InventoryLocation | None:
    return (
        _live_locations()
        .filter(InventoryLocation.default_location.is_(True))
        .order_by(InventoryLocation.id.asc())
        .first()
    )


def remove_location(location_id: int, *, user_id: int | None = None) -> InventoryLocation:
    """
    Soft-delete a location.

    Its increments keep counting toward history; the location simply stops
    being offered as a target.
    """
    def _op():
        location = get_location(location_id, lock=True)
        if not location.can_be_removed or location.system_use_only:
            raise StateError(
                f"{location.name} cannot be removed",
                identifier="location_not_removable",
            )
        if location.default_location:
            raise StateError(
                "The default location cannot be removed",
                identifier="location_remove_default",
            )
        location.deleted_at = utcnow()

        append_entity_log(
            entity_type="location",
            entity_id=location.id,
            user_id=user_id,
            system_note=f"Removed location {location.name}",
        )
        db.session.commit()
        return location

    return run_with_retry(_op)

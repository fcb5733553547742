"""
Inspection Document Store.

Owns the live inspection and the wizard step pointer. Every mutation runs
merge -> persist -> notify under one lock, so the snapshot on disk always
pairs an inspection with the step it was saved at.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from inspection import document
from inspection.models import (
    AccidentType,
    DamagePhoto,
    Inspection,
    PartyRole,
    VehiclePhoto,
    WizardSnapshot,
)
from inspection.snapshot import SnapshotStorage

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[Inspection, int], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InspectionStore:
    def __init__(self, storage: SnapshotStorage, clock: Clock = utc_now):
        self._storage = storage
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._inspection, self._current_step = self._load()

    # ---- state ----

    @property
    def inspection(self) -> Inspection:
        return self._inspection

    @property
    def current_step(self) -> int:
        return self._current_step

    def now(self) -> datetime:
        return self._clock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ---- lifecycle ----

    def init_inspection(self, country: str, accident_type: AccidentType = AccidentType.COLLISION) -> Inspection:
        with self._lock:
            inspection = document.scaffold_inspection(self._clock(), country, accident_type)
            return self._commit(inspection, step=1)

    def reset_inspection(self) -> Inspection:
        with self._lock:
            return self._commit(document.new_inspection(self._clock()), step=0)

    # ---- entity updates ----

    def update_inspection(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_inspection_fields(i, now, changes))

    def update_insured_person(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_person(i, PartyRole.INSURED, now, changes))

    def update_insured_identity(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_identity(i, PartyRole.INSURED, now, changes))

    def update_third_party_person(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_person(i, PartyRole.THIRD_PARTY, now, changes))

    def update_third_party_identity(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_identity(i, PartyRole.THIRD_PARTY, now, changes))

    def update_insured_vehicle(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_vehicle(i, PartyRole.INSURED, now, changes))

    def update_third_party_vehicle(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_vehicle(i, PartyRole.THIRD_PARTY, now, changes))

    def update_person(self, role: PartyRole, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_person(i, role, now, changes))

    def update_identity(self, role: PartyRole, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_identity(i, role, now, changes))

    def update_vehicle(self, role: PartyRole, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_vehicle(i, role, now, changes))

    def fill_vehicle_field(self, role: PartyRole, field: str, value: Any) -> bool:
        """Set a vehicle field only while it is still empty. Returns whether it was set."""
        with self._lock:
            vehicle = self._inspection.vehicle(role)
            if vehicle is None or getattr(vehicle, field):
                return False
            self._apply(lambda i, now: document.with_vehicle(i, role, now, {field: value}))
            return True

    def update_accident_scene(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_scene(i, now, changes))

    def update_consent(self, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_consent(i, now, changes))

    # ---- photo lists ----

    def add_vehicle_photo(self, role: PartyRole, photo: VehiclePhoto) -> Inspection:
        return self._apply(lambda i, now: document.with_vehicle_photo_added(i, role, photo, now))

    def update_vehicle_photo(self, role: PartyRole, photo_id: str, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_vehicle_photo_updated(i, role, photo_id, now, changes))

    def add_scene_photo(self, photo: VehiclePhoto) -> Inspection:
        return self._apply(lambda i, now: document.with_scene_photo_added(i, photo, now))

    def remove_scene_photo(self, photo_id: str) -> Inspection:
        return self._apply(lambda i, now: document.with_scene_photo_removed(i, photo_id, now))

    def add_damage_photo(self, photo: DamagePhoto) -> Inspection:
        return self._apply(lambda i, now: document.with_damage_photo_added(i, photo, now))

    def remove_damage_photo(self, photo_id: str) -> Inspection:
        return self._apply(lambda i, now: document.with_damage_photo_removed(i, photo_id, now))

    def update_damage_photo(self, photo_id: str, **changes: Any) -> Inspection:
        return self._apply(lambda i, now: document.with_damage_photo_updated(i, photo_id, now, changes))

    def set_has_third_party(self, value: bool) -> Inspection:
        return self._apply(lambda i, now: document.with_third_party(i, value, now))

    # ---- step pointer ----

    def set_step(self, step: int) -> int:
        with self._lock:
            self._commit(self._inspection, step=max(step, 0))
            return self._current_step

    def next_step(self) -> int:
        with self._lock:
            return self.set_step(self._current_step + 1)

    def prev_step(self) -> int:
        with self._lock:
            return self.set_step(max(self._current_step - 1, 0))

    # ---- internals ----

    def _apply(self, op: Callable[[Inspection, datetime], Inspection]) -> Inspection:
        with self._lock:
            updated = op(self._inspection, self._clock())
            if updated is self._inspection:
                # No-op (e.g. photo for a vehicle that does not exist): nothing to persist
                return updated
            return self._commit(updated, step=self._current_step)

    def _commit(self, inspection: Inspection, step: int) -> Inspection:
        self._inspection = inspection
        self._current_step = step
        self._persist()
        logger.debug("Committed inspection %s at step %d", inspection.id, step)
        for listener in list(self._listeners):
            listener(inspection, step)
        return inspection

    def _persist(self) -> None:
        snapshot = WizardSnapshot(inspection=self._inspection, current_step=self._current_step)
        try:
            self._storage.write(snapshot.model_dump_json())
        except OSError as e:
            # The in-memory document stays authoritative; the next mutation writes again
            logger.warning("Could not write inspection snapshot: %s", e)

    def _load(self) -> tuple[Inspection, int]:
        try:
            raw = self._storage.read()
        except OSError as e:
            logger.warning("Could not read inspection snapshot, starting fresh: %s", e)
            raw = None

        if raw:
            try:
                snapshot = WizardSnapshot.model_validate_json(raw)
                return snapshot.inspection, snapshot.current_step
            except ValidationError as e:
                logger.warning("Discarding unreadable inspection snapshot: %s", e.errors()[:1])

        return document.new_inspection(self._clock()), 0

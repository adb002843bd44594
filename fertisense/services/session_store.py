"""
Session Store.

Keeps the current reading session per farmer identity in durable local
storage and syncs it to the remote log at most once per session key.

Keys:
    readingSession:last:{identity}   current SessionRecord
    history:{identity}               history list, newest first

The local history entry is always written before the remote attempt, so a
network failure never loses the user's ledger entry.
"""
from typing import Any, Callable, Dict, List, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import hashlib
import json
import math
import logging

from fertisense.config import HISTORY_LIMIT, SESSION_BUCKET_SECONDS
from fertisense.models.session_models import KeyValueEntry
from fertisense.services.plan_ranker import Plan
from fertisense.services.reading_aggregator import SoilReading
from fertisense.services.recommendation_engine import (
    Recommendation,
    default_selected_plan_id,
    select_plan,
)
from fertisense.services.recommendation_errors import NotFoundError, SyncFailure
from fertisense.services.remote_session_log import RemoteSessionLog, build_remote_payload
from fertisense.services.requirement_resolver import FarmSelection

logger = logging.getLogger(__name__)

CURRENT_KEY_PREFIX = "readingSession:last"
HISTORY_KEY_PREFIX = "history"


class SyncState(str, Enum):
    PENDING = "PENDING"
    SAVING = "SAVING"
    SAVED = "SAVED"
    FAILED = "FAILED"


def current_key(identity: str) -> str:
    return f"{CURRENT_KEY_PREFIX}:{identity}"


def history_key(identity: str) -> str:
    return f"{HISTORY_KEY_PREFIX}:{identity}"


class InMemoryKeyValueStore:
    """Process-local store. Values are kept as JSON text like the durable store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any):
        self._data[key] = json.dumps(value)

    async def remove(self, key: str):
        self._data.pop(key, None)


class SqlAlchemyKeyValueStore:
    """Durable store on the ``kv_entries`` table."""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[Any]:
        db = self.session_factory()
        try:
            entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
            return json.loads(entry.value) if entry else None
        finally:
            db.close()

    async def set(self, key: str, value: Any):
        db = self.session_factory()
        try:
            entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
            if entry is None:
                entry = KeyValueEntry(key=key, value=json.dumps(value))
                db.add(entry)
            else:
                entry.value = json.dumps(value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def remove(self, key: str):
        db = self.session_factory()
        try:
            db.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
            db.commit()
        finally:
            db.close()


def session_key(
    identity: str,
    reading: SoilReading,
    selection: FarmSelection,
    bucket_seconds: int = SESSION_BUCKET_SECONDS,
    area_ha: Optional[float] = None,
    rule_set_id: Optional[str] = None,
) -> str:
    """
    Deterministic key over identity, averaged values, selection and time bucket.

    Farm area and rule set are part of the key: they change the plans.
    """
    captured = reading.captured_at
    if captured.tzinfo is None:
        captured = captured.replace(tzinfo=timezone.utc)
    bucket = math.floor(captured.timestamp() / bucket_seconds) if bucket_seconds > 0 else 0
    material = json.dumps(
        {
            "identity": identity,
            "n": reading.nitrogen_ppm,
            "p": reading.phosphorus_ppm,
            "k": reading.potassium_ppm,
            "ph": reading.ph,
            "selection": selection.to_dict(),
            "areaHa": area_ha,
            "ruleSetId": rule_set_id,
            "bucket": bucket,
        },
        sort_keys=True,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass
class SessionRecord:
    reading: SoilReading
    selection: FarmSelection
    farmer_identity: str
    session_key: str
    recommendation: Optional[Recommendation] = None
    selected_plan_id: Optional[str] = None
    sync_state: SyncState = SyncState.PENDING
    remote_synced: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def plans(self) -> List[Plan]:
        return self.recommendation.plans if self.recommendation else []

    @property
    def selected_plan(self) -> Optional[Plan]:
        if not self.plans:
            return None
        try:
            return select_plan(self.plans, self.selected_plan_id)
        except NotFoundError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reading": self.reading.to_dict(),
            "selection": self.selection.to_dict(),
            "farmerIdentity": self.farmer_identity,
            "sessionKey": self.session_key,
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "selectedPlanId": self.selected_plan_id,
            "syncState": self.sync_state.value,
            "remoteSynced": self.remote_synced,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        recommendation = data.get("recommendation")
        return cls(
            reading=SoilReading.from_dict(data["reading"]),
            selection=FarmSelection.from_dict(data.get("selection") or {}),
            farmer_identity=data["farmerIdentity"],
            session_key=data["sessionKey"],
            recommendation=Recommendation.from_dict(recommendation) if recommendation else None,
            selected_plan_id=data.get("selectedPlanId"),
            sync_state=SyncState(data.get("syncState", SyncState.PENDING.value)),
            remote_synced=bool(data.get("remoteSynced", False)),
            created_at=datetime.fromisoformat(data["createdAt"]) if data.get("createdAt") else datetime.now(timezone.utc),
        )

    def history_entry(self) -> Dict[str, Any]:
        recommendation = self.recommendation
        return {
            "id": self.session_key,
            "sessionKey": self.session_key,
            "date": self.reading.captured_at.date().isoformat(),
            "farmerIdentity": self.farmer_identity,
            "reading": self.reading.to_dict(),
            "phStatus": self.reading.ph_status,
            "selection": self.selection.to_dict(),
            "nutrientClass": recommendation.nutrient_class if recommendation else "---",
            "plans": [
                {
                    "id": p.id,
                    "label": p.label,
                    "isCheapest": p.is_cheapest,
                    "total": p.total_cost,
                    "currency": p.cost.currency if p.cost else None,
                    "schedule": p.schedule.to_payload(),
                }
                for p in self.plans
            ],
            "selectedPlanId": self.selected_plan_id,
            "syncState": self.sync_state.value,
            "remoteSynced": self.remote_synced,
        }


class SessionStore:
    def __init__(
        self,
        kv_store=None,
        remote_log: Optional[RemoteSessionLog] = None,
        history_limit: int = HISTORY_LIMIT,
        bucket_seconds: int = SESSION_BUCKET_SECONDS,
    ):
        self.kv = kv_store if kv_store is not None else InMemoryKeyValueStore()
        self.remote_log = remote_log
        self.history_limit = history_limit
        self.bucket_seconds = bucket_seconds
        self._current: Dict[str, SessionRecord] = {}
        self._last_synced_key: Dict[str, str] = {}
        self._busy: Set[str] = set()

    def current(self, identity: str) -> Optional[SessionRecord]:
        return self._current.get(identity)

    def is_superseded(self, record: SessionRecord) -> bool:
        current = self._current.get(record.farmer_identity)
        return current is None or current.session_key != record.session_key

    async def load_current(self, identity: str) -> Optional[SessionRecord]:
        """In-memory record, else the one persisted before a restart."""
        record = self._current.get(identity)
        if record is not None:
            return record
        data = await self.kv.get(current_key(identity))
        if not data:
            return None
        record = SessionRecord.from_dict(data)
        self._current[identity] = record
        if record.sync_state in (SyncState.SAVED, SyncState.FAILED):
            self._last_synced_key[identity] = record.session_key
        return record

    async def commit(
        self,
        reading: SoilReading,
        selection: FarmSelection,
        farmer_identity: str,
        recommendation: Optional[Recommendation] = None,
    ) -> SessionRecord:
        """
        Create (or return) the record for this reading.

        Re-committing the same reading in the same time bucket returns the
        existing record unchanged; anything else supersedes it.
        """
        key = session_key(
            farmer_identity,
            reading,
            selection,
            self.bucket_seconds,
            area_ha=recommendation.area_ha if recommendation else None,
            rule_set_id=recommendation.rule_set_id if recommendation else None,
        )
        existing = await self.load_current(farmer_identity)
        if existing is not None and existing.session_key == key:
            return existing

        if existing is not None:
            logger.info(f"Session {existing.session_key[:12]} superseded for {farmer_identity}")

        record = SessionRecord(
            reading=reading,
            selection=selection,
            farmer_identity=farmer_identity,
            session_key=key,
            recommendation=recommendation,
            selected_plan_id=default_selected_plan_id(recommendation.plans) if recommendation else None,
        )
        self._current[farmer_identity] = record
        await self.kv.set(current_key(farmer_identity), record.to_dict())
        logger.info(f"Session {key[:12]} committed for {farmer_identity}")
        return record

    async def _write_history(self, record: SessionRecord):
        key = history_key(record.farmer_identity)
        entries = await self.kv.get(key) or []
        entry = record.history_entry()
        for i, existing in enumerate(entries):
            if existing.get("sessionKey") == record.session_key:
                entries[i] = entry
                break
        else:
            entries.insert(0, entry)
        await self.kv.set(key, entries[: self.history_limit])

    async def history(self, identity: str) -> List[Dict[str, Any]]:
        return await self.kv.get(history_key(identity)) or []

    async def try_sync_once(self, record: SessionRecord) -> SyncState:
        """
        Persist locally and attempt the remote write once for this key.

        A repeat call for an already attempted key, or a concurrent call while
        the write is in flight, returns the current state without I/O.
        """
        identity = record.farmer_identity
        key = record.session_key
        if self._last_synced_key.get(identity) == key or key in self._busy:
            return record.sync_state
        if record.sync_state in (SyncState.SAVED, SyncState.FAILED):
            return record.sync_state

        self._busy.add(key)
        record.sync_state = SyncState.SAVING
        try:
            await self._write_history(record)

            state = SyncState.SAVED
            remote_synced = False
            if self.remote_log is None or not await self.remote_log.is_online():
                logger.warning(f"Offline, session {key[:12]} saved locally only")
            else:
                selected = record.selected_plan
                payload = build_remote_payload(
                    record.reading.to_dict(),
                    record.selection.to_dict(),
                    identity,
                    record.recommendation.nutrient_class if record.recommendation else "---",
                    selected.to_dict() if selected else None,
                )
                try:
                    await self.remote_log.write(identity, payload)
                    remote_synced = True
                except SyncFailure as e:
                    logger.warning(f"Remote sync failed for session {key[:12]}: {e}")
                    state = SyncState.FAILED

            record.sync_state = state
            record.remote_synced = remote_synced
            if self.is_superseded(record):
                # newer session owns the current slot; only its history entry is settled
                logger.warning(f"Session {key[:12]} superseded during sync, history updated only")
                await self._write_history(record)
                return state

            self._last_synced_key[identity] = key
            await self.kv.set(current_key(identity), record.to_dict())
            await self._write_history(record)
            if state == SyncState.SAVED:
                logger.info(f"Session {key[:12]} saved (remote={remote_synced})")
            return state
        finally:
            self._busy.discard(key)

    async def select_plan(self, identity: str, plan_id: str) -> SessionRecord:
        record = await self.load_current(identity)
        if record is None:
            raise NotFoundError(f"No reading session for {identity}")
        plan = select_plan(record.plans, plan_id)
        record.selected_plan_id = plan.id
        await self.kv.set(current_key(identity), record.to_dict())
        history = await self.history(identity)
        if any(e.get("sessionKey") == record.session_key for e in history):
            await self._write_history(record)
        return record

"""
Technician registry: shared pool of technicians with availability.

Reservation is the one operation that must be atomic: "is available AND mark
unavailable" happens as a single check-and-set, so two concurrent dispatches
can never both book the same technician. The in-memory backend holds a lock
per technician record; the Redis backend (TECHNICIAN:{id}, TECHNICIANS_AVAILABLE)
does the check-and-set inside a WATCH/MULTI transaction.
"""

import logging
import threading
from typing import Iterable, Optional, Protocol

from triage.config import REDIS_URL
from triage.errors import NotFoundError
from triage.models import Technician

logger = logging.getLogger(__name__)


class TechnicianRegistry(Protocol):
    def register(self, technician: Technician) -> None: ...

    def get(self, technician_id: str) -> Optional[Technician]: ...

    def list_all(self) -> list[Technician]: ...

    def query_available(self, required_skills: Optional[Iterable[str]] = None) -> list[Technician]: ...

    def try_reserve(self, technician_id: str) -> bool: ...

    def release(self, technician_id: str) -> None: ...


def _has_any_skill(technician: Technician, required: Optional[set[str]]) -> bool:
    if required is None:
        return True
    return bool(required.intersection(technician.skills))


def _skill_set(required_skills: Optional[Iterable[str]]) -> Optional[set[str]]:
    """None means "any skill"; an empty iterable matches nobody."""
    if required_skills is None:
        return None
    return {s.lower() for s in required_skills}


class InMemoryTechnicianRegistry:
    """Process-local registry. One lock per technician guards reserve/release."""

    def __init__(self, technicians: Optional[Iterable[Technician]] = None) -> None:
        self._technicians: dict[str, Technician] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()
        for t in technicians or []:
            self.register(t)

    def _lock_for(self, technician_id: str) -> threading.Lock:
        with self._table_lock:
            if technician_id not in self._locks:
                raise NotFoundError(f"Technician {technician_id} not found")
            return self._locks[technician_id]

    def register(self, technician: Technician) -> None:
        """Upsert a technician record."""
        with self._table_lock:
            lock = self._locks.setdefault(technician.id, threading.Lock())
        with lock:
            self._technicians[technician.id] = technician.model_copy(deep=True)
        logger.info("Technician %s registered (skills: %s).", technician.id, ", ".join(technician.skills))

    def get(self, technician_id: str) -> Optional[Technician]:
        with self._table_lock:
            lock = self._locks.get(technician_id)
        if lock is None:
            return None
        with lock:
            tech = self._technicians.get(technician_id)
            return tech.model_copy(deep=True) if tech else None

    def list_all(self) -> list[Technician]:
        with self._table_lock:
            ids = sorted(self._locks)
        return [t for t in (self.get(i) for i in ids) if t is not None]

    def query_available(self, required_skills: Optional[Iterable[str]] = None) -> list[Technician]:
        """Snapshot of available technicians with at least one required skill."""
        required = _skill_set(required_skills)
        return [t for t in self.list_all() if t.available and _has_any_skill(t, required)]

    def try_reserve(self, technician_id: str) -> bool:
        """Atomically mark an available technician unavailable. False if already taken."""
        with self._lock_for(technician_id):
            tech = self._technicians[technician_id]
            if not tech.available:
                return False
            self._technicians[technician_id] = tech.model_copy(
                update={"available": False, "active_jobs": tech.active_jobs + 1}
            )
        logger.info("Technician %s reserved.", technician_id)
        return True

    def release(self, technician_id: str) -> None:
        """Job finished: decrement active jobs and make the technician available again."""
        with self._lock_for(technician_id):
            tech = self._technicians[technician_id]
            self._technicians[technician_id] = tech.model_copy(
                update={"available": True, "active_jobs": max(0, tech.active_jobs - 1)}
            )
        logger.info("Technician %s released.", technician_id)


TECHNICIAN_PREFIX = "technician:"
TECHNICIANS_SET = "technicians:all"
TECHNICIANS_AVAILABLE_SET = "technicians:available"


class RedisTechnicianRegistry:
    """Registry shared across processes, backed by Redis."""

    def __init__(self, client=None, url: str = REDIS_URL) -> None:
        self._client = client
        self._url = url

    def _redis(self):
        if self._client is None:
            import redis
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    @staticmethod
    def _key(technician_id: str) -> str:
        return f"{TECHNICIAN_PREFIX}{technician_id}"

    def register(self, technician: Technician) -> None:
        """Upsert a technician. TECHNICIANS_AVAILABLE is kept in sync with technician.available."""
        r = self._redis()
        pipe = r.pipeline()
        pipe.set(self._key(technician.id), technician.model_dump_json())
        pipe.sadd(TECHNICIANS_SET, technician.id)
        if technician.available:
            pipe.sadd(TECHNICIANS_AVAILABLE_SET, technician.id)
        else:
            pipe.srem(TECHNICIANS_AVAILABLE_SET, technician.id)
        pipe.execute()
        logger.info("Technician %s registered (skills: %s).", technician.id, ", ".join(technician.skills))

    def get(self, technician_id: str) -> Optional[Technician]:
        raw = self._redis().get(self._key(technician_id))
        if not raw:
            return None
        return Technician.model_validate_json(raw)

    def list_all(self) -> list[Technician]:
        ids = sorted(self._redis().smembers(TECHNICIANS_SET))
        return [t for t in (self.get(i) for i in ids) if t is not None]

    def query_available(self, required_skills: Optional[Iterable[str]] = None) -> list[Technician]:
        required = _skill_set(required_skills)
        ids = sorted(self._redis().smembers(TECHNICIANS_AVAILABLE_SET))
        out = []
        for tid in ids:
            tech = self.get(tid)
            if tech and tech.available and _has_any_skill(tech, required):
                out.append(tech)
        return out

    def _update(self, technician_id: str, reserve: bool) -> bool:
        """Check-and-set on one technician record inside WATCH/MULTI; retried on concurrent writes."""
        import redis

        key = self._key(technician_id)
        with self._redis().pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if not raw:
                        pipe.unwatch()
                        raise NotFoundError(f"Technician {technician_id} not found")
                    tech = Technician.model_validate_json(raw)
                    if reserve and not tech.available:
                        pipe.unwatch()
                        return False
                    if reserve:
                        tech.available = False
                        tech.active_jobs += 1
                    else:
                        tech.available = True
                        tech.active_jobs = max(0, tech.active_jobs - 1)
                    pipe.multi()
                    pipe.set(key, tech.model_dump_json())
                    if reserve:
                        pipe.srem(TECHNICIANS_AVAILABLE_SET, technician_id)
                    else:
                        pipe.sadd(TECHNICIANS_AVAILABLE_SET, technician_id)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    logger.debug("Technician %s changed during update; retrying.", technician_id)
                    continue

    def try_reserve(self, technician_id: str) -> bool:
        reserved = self._update(technician_id, reserve=True)
        if reserved:
            logger.info("Technician %s reserved.", technician_id)
        return reserved

    def release(self, technician_id: str) -> None:
        self._update(technician_id, reserve=False)
        logger.info("Technician %s released.", technician_id)


# Technicians registered at startup.
MOCK_TECHNICIANS = [
    Technician(
        id="tech-1",
        name="John Smith",
        phone="+1234567890",
        email="john@example.com",
        skills=["plumbing", "general"],
        available=True,
        rating=4.8,
        response_time_minutes=25,
        hourly_rate=85,
        emergency_rate=125,
        max_concurrent_jobs=3,
        zone="Zone A",
    ),
    Technician(
        id="tech-2",
        name="Maria Garcia",
        phone="+1234567891",
        email="maria@example.com",
        skills=["electrical", "hvac"],
        available=True,
        rating=4.9,
        response_time_minutes=30,
        hourly_rate=95,
        emergency_rate=140,
        max_concurrent_jobs=3,
        zone="Zone B",
    ),
    Technician(
        id="tech-3",
        name="Mike Johnson",
        phone="+1234567892",
        email="mike@example.com",
        skills=["plumbing", "hvac", "appliance"],
        available=False,
        rating=4.7,
        response_time_minutes=20,
        hourly_rate=90,
        emergency_rate=135,
        max_concurrent_jobs=2,
        zone="Zone A",
    ),
]


def seed_mock_technicians(registry: TechnicianRegistry) -> None:
    """Register mock technicians only if they don't exist. Preserves availability on restart."""
    seeded = 0
    for tech in MOCK_TECHNICIANS:
        if registry.get(tech.id) is None:
            registry.register(tech)
            seeded += 1
    if seeded:
        logger.info("Seeded %d mock technicians (existing technicians left unchanged).", seeded)

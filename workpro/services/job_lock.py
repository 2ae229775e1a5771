"""
Named TTL lock backed by the ``job_locks`` table.

Several server processes may run the SLA monitor at once; each tick acquires
the lock first and simply skips the tick when another process holds it.
Locks expire on their own, so a crashed holder blocks at most one TTL.

    acquire(name, ttl)  insert the row, or take over an expired row with a
                        conditional UPDATE; True when this owner holds it
    release(name)       delete the row if this owner still holds it

Locks are not re-entrant: a second ``acquire`` by the same owner while the
lock is live returns False.
"""

import logging
import os
import socket
import uuid
from datetime import timedelta

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError

from workpro.models import db
from workpro.models.scheduling import JobLock
from workpro.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class JobLockService:
    """Acquire/release named locks. Each call runs in its own transaction."""

    def __init__(self, owner: str | None = None):
        self.owner = owner or default_owner()

    def acquire(self, name: str, ttl_seconds: int, now=None) -> bool:
        now = now or utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        taken = db.session.execute(
            update(JobLock)
            .where(JobLock.name == name, JobLock.expires_at <= now)
            .values(owner=self.owner, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if taken:
            db.session.commit()
            logger.debug("Job lock taken over", extra={"lock": name, "owner": self.owner})
            return True

        try:
            db.session.execute(
                insert(JobLock).values(name=name, owner=self.owner,
                                       acquired_at=now, expires_at=expires_at)
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.debug("Job lock busy", extra={"lock": name, "owner": self.owner})
            return False
        return True

    def release(self, name: str) -> bool:
        released = db.session.execute(
            delete(JobLock)
            .where(JobLock.name == name, JobLock.owner == self.owner)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()
        return bool(released)

"""
Time-boxed doctor access grants.

Validity is recomputed from the wall clock on every read: a grant is usable
while it is not revoked and its expiry lies in the future. Revocation and
expiry are independent; either one alone ends access. "Expiring soon" is an
advisory flag for the doctor dashboard, never an authorization state.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from carelink import config, policy
from carelink.db import store_errors
from carelink.errors import NotFound, Forbidden, InvalidDuration
from carelink.models import Doctor, DoctorAccess, Profile, Audit, gen_uuid

logger = logging.getLogger(__name__)

EXPIRED = "Expired"


@dataclass(frozen=True)
class Grant:
    grant_id: str
    doctor_id: str
    profile_id: str
    expires_at: datetime
    is_revoked: bool

    @classmethod
    def from_row(cls, row: DoctorAccess) -> "Grant":
        return cls(row.id, row.doctor_id, row.profile_id, row.expires_at, bool(row.is_revoked))


def is_valid(grant: Grant, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return not grant.is_revoked and now < grant.expires_at


def time_remaining(grant: Grant, now: Optional[datetime] = None):
    """`timedelta` left before expiry, or `EXPIRED`."""
    now = now or datetime.utcnow()
    remaining = grant.expires_at - now
    if remaining <= timedelta(0):
        return EXPIRED
    return remaining


def is_expiring_soon(grant: Grant, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    if not is_valid(grant, now):
        return False
    return time_remaining(grant, now) < timedelta(hours=config.EXPIRING_SOON_HOURS)


def format_time_remaining(grant: Grant, now: Optional[datetime] = None) -> str:
    remaining = time_remaining(grant, now)
    if remaining == EXPIRED:
        return EXPIRED
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"


def list_valid_grants_for(db: Session, doctor_id: str, now: Optional[datetime] = None):
    """Unrevoked, unexpired grants for a doctor, soonest expiry first."""
    now = now or datetime.utcnow()
    with store_errors(db):
        rows = (
            db.query(DoctorAccess)
            .filter(
                DoctorAccess.doctor_id == doctor_id,
                DoctorAccess.is_revoked.is_(False),
                DoctorAccess.expires_at > now,
            )
            .order_by(DoctorAccess.expires_at.asc())
            .all()
        )
    return [Grant.from_row(r) for r in rows]


def can_view_records(db: Session, doctor_id: str, profile_id: str, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return any(g.profile_id == profile_id for g in list_valid_grants_for(db, doctor_id, now))


def issue_grant(db: Session, user_id: str, doctor_id: str, profile_id: str, hours: int,
                now: Optional[datetime] = None) -> Grant:
    now = now or datetime.utcnow()
    if hours < 1 or hours > config.MAX_GRANT_HOURS:
        raise InvalidDuration(f"grant duration must be between 1 and {config.MAX_GRANT_HOURS} hours")
    with store_errors(db):
        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        if not profile:
            raise NotFound("profile not found")
        if not policy.can_issue_grant(user_id, profile):
            raise Forbidden("only the profile owner can share access")
        if not db.query(Doctor).filter(Doctor.id == doctor_id).first():
            raise NotFound("doctor not found")
        row = DoctorAccess(id=gen_uuid(), doctor_id=doctor_id, profile_id=profile_id, granted_by_user_id=user_id,
                           created_at=now, expires_at=now + timedelta(hours=hours), is_revoked=False)
        db.add(row)
        db.add(Audit(actor=user_id, action="grant_access", target=row.id, ts=now,
                     meta={"doctor_id": doctor_id, "profile_id": profile_id, "hours": hours}))
        db.commit()
        grant = Grant.from_row(row)
    logger.info("Doctor %s granted access to profile %s until %s", doctor_id, profile_id, grant.expires_at)
    return grant


def revoke_grant(db: Session, user_id: str, grant_id: str, now: Optional[datetime] = None) -> Grant:
    """Flip `is_revoked` on. Revoking twice is a no-op."""
    now = now or datetime.utcnow()
    with store_errors(db):
        row = db.query(DoctorAccess).filter(DoctorAccess.id == grant_id).first()
        if not row:
            raise NotFound("grant not found")
        if row.granted_by_user_id != user_id and not policy.can_issue_grant(user_id, row.profile):
            raise Forbidden("only the profile owner can revoke access")
        if not row.is_revoked:
            db.query(DoctorAccess).filter(DoctorAccess.id == grant_id, DoctorAccess.is_revoked.is_(False)) \
                .update({DoctorAccess.is_revoked: True}, synchronize_session=False)
            db.add(Audit(actor=user_id, action="revoke_access", target=grant_id, ts=now))
            db.commit()
            db.refresh(row)
        grant = Grant.from_row(row)
    logger.info("Grant %s revoked", grant_id)
    return grant

"""
OTP challenge engine.

The only code that mints or consumes a `PartnerOtpRequest`. Codes travel to
the patient through the notifier and are stored as keyed hashes; the caller
only ever receives a `ChallengeHandle`.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from carelink import config
from carelink.db import store_errors
from carelink.errors import NotFound, NoDeliveryChannel, RateLimited, DeliveryFailed
from carelink.models import Partner, Profile, PartnerOtpRequest, Audit, gen_uuid
from carelink.notifications import otp_message
from carelink.utils import generate_otp, hash_code, is_well_formed_otp, mask_email

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    VERIFIED = "verified"
    INVALID = "invalid"


@dataclass(frozen=True)
class ChallengeHandle:
    challenge_id: str
    expires_at: datetime
    delivered_to: str


def _pair(partner_id, profile_id):
    return (PartnerOtpRequest.partner_id == partner_id, PartnerOtpRequest.profile_id == profile_id)


def check_rate_limit(db: Session, partner_id: str, profile_id: str, now: datetime) -> None:
    """Raise `RateLimited` when the trailing window already holds the maximum number of challenges."""
    window = timedelta(minutes=config.OTP_WINDOW_MINUTES)
    recent = (
        db.query(PartnerOtpRequest.created_at)
        .filter(*_pair(partner_id, profile_id), PartnerOtpRequest.created_at >= now - window)
        .order_by(PartnerOtpRequest.created_at.asc())
        .all()
    )
    if len(recent) < config.OTP_MAX_PER_WINDOW:
        return
    # the window reopens once enough of the oldest rows have slid out of it
    leaving = recent[len(recent) - config.OTP_MAX_PER_WINDOW][0]
    retry_after = max(1, int((leaving + window - now).total_seconds()) + 1)
    logger.warning("OTP rate limit hit for partner=%s profile=%s", partner_id, profile_id)
    raise RateLimited(retry_after)


def issue_challenge(db: Session, partner_id: str, profile_id: str, notifier,
                    now: Optional[datetime] = None) -> ChallengeHandle:
    now = now or datetime.utcnow()
    with store_errors(db):
        # Writing the partner row first takes a write lock (row lock on Postgres, RESERVED lock
        # on SQLite) held until commit, so the count below and the insert are serialized per partner.
        locked = (
            db.query(Partner)
            .filter(Partner.id == partner_id)
            .update({Partner.last_challenge_at: now}, synchronize_session=False)
        )
        if not locked:
            db.rollback()
            raise NotFound("partner not found")
        partner = db.query(Partner).filter(Partner.id == partner_id).first()
        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        if not profile:
            db.rollback()
            raise NotFound("profile not found")
        if not profile.email:
            db.rollback()
            raise NoDeliveryChannel()
        try:
            check_rate_limit(db, partner_id, profile_id, now)
        except RateLimited:
            db.rollback()
            raise

        code = generate_otp()
        address, partner_name = profile.email, partner.name
        challenge = PartnerOtpRequest(
            id=gen_uuid(),
            partner_id=partner_id,
            profile_id=profile_id,
            otp_code=hash_code(code),
            created_at=now,
            expires_at=now + timedelta(minutes=config.OTP_TTL_MINUTES),
            verified=False,
        )
        db.add(challenge)
        db.add(Audit(actor=partner_id, action="issue_challenge", target=profile_id, ts=now,
                     meta={"challenge_id": challenge.id}))
        db.commit()
        handle = ChallengeHandle(challenge.id, challenge.expires_at, mask_email(address))

    subject, body = otp_message(partner_name, code, config.OTP_TTL_MINUTES)
    try:
        notifier.send(address, subject, body)
    except DeliveryFailed:
        logger.warning("OTP delivery failed for challenge %s; left to expire", handle.challenge_id)
        raise
    except Exception as e:
        logger.warning("OTP delivery failed for challenge %s; left to expire", handle.challenge_id)
        raise DeliveryFailed() from e

    logger.info("OTP challenge %s issued by partner=%s for profile=%s", handle.challenge_id, partner_id, profile_id)
    return handle


def claim_challenge(db: Session, challenge_id: str, now: datetime) -> bool:
    """Compare-and-swap `verified` false -> true. True only for the single caller that flipped it."""
    updated = (
        db.query(PartnerOtpRequest)
        .filter(
            PartnerOtpRequest.id == challenge_id,
            PartnerOtpRequest.verified.is_(False),
            PartnerOtpRequest.expires_at > now,
        )
        .update({PartnerOtpRequest.verified: True}, synchronize_session=False)
    )
    return updated == 1


def verify_challenge(db: Session, partner_id: str, profile_id: str, code: str,
                     now: Optional[datetime] = None) -> Outcome:
    now = now or datetime.utcnow()
    if not is_well_formed_otp(code):
        return Outcome.INVALID
    with store_errors(db):
        candidate = (
            db.query(PartnerOtpRequest)
            .filter(
                *_pair(partner_id, profile_id),
                PartnerOtpRequest.otp_code == hash_code(code),
                PartnerOtpRequest.verified.is_(False),
                PartnerOtpRequest.expires_at > now,
            )
            .order_by(PartnerOtpRequest.created_at.desc())
            .first()
        )
        if candidate is None or not claim_challenge(db, candidate.id, now):
            db.rollback()
            logger.info("OTP verification rejected for partner=%s profile=%s", partner_id, profile_id)
            return Outcome.INVALID
        db.add(Audit(actor=partner_id, action="verify_challenge", target=profile_id, ts=now,
                     meta={"challenge_id": candidate.id}))
        db.commit()
    return Outcome.VERIFIED


def find_verified_challenge(db: Session, partner_id: str, profile_id: str, code: str,
                            now: Optional[datetime] = None,
                            created_after: Optional[datetime] = None) -> Optional[PartnerOtpRequest]:
    """An already-latched, still unexpired challenge matching `code`, newer than `created_after`."""
    now = now or datetime.utcnow()
    if not is_well_formed_otp(code):
        return None
    with store_errors(db):
        q = db.query(PartnerOtpRequest).filter(
            *_pair(partner_id, profile_id),
            PartnerOtpRequest.otp_code == hash_code(code),
            PartnerOtpRequest.verified.is_(True),
            PartnerOtpRequest.expires_at > now,
        )
        if created_after is not None:
            q = q.filter(PartnerOtpRequest.created_at > created_after)
        return q.order_by(PartnerOtpRequest.created_at.desc()).first()

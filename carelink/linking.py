"""
Consent linking between partners and patient profiles.

A partner finds a profile, the patient confirms with an emailed one-time code,
and a `PartnerUser` consent link is materialized. Links are upserted on
(partner_id, profile_id) so retries never create duplicates, and unlinking
stamps `revoked_at` so that codes verified before the unlink cannot bring the
link back.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carelink import policy
from carelink.challenges import ChallengeHandle, Outcome, issue_challenge, verify_challenge, find_verified_challenge
from carelink.db import store_errors
from carelink.errors import NotFound, AlreadyLinked, NotLinkable, InvalidCode
from carelink.models import Partner, Profile, PartnerUser, Audit, gen_uuid
from carelink.utils import generate_carebag_id, normalize_phone

logger = logging.getLogger(__name__)


class LinkStatus(str, enum.Enum):
    CHALLENGE_SENT = "challenge_sent"
    LINKED = "linked"


@dataclass(frozen=True)
class LinkRequestResult:
    status: LinkStatus
    profile_id: str
    challenge: Optional[ChallengeHandle] = None


# --- lookups

def resolve_subject(db: Session, candidate: str) -> Profile:
    """Exact match on CareBag ID, then email, then phone. Ambiguous matches resolve to nothing."""
    query = (candidate or "").strip()
    if not query:
        raise NotFound("enter a CareBag ID, email, or phone number")
    conditions = (
        Profile.carebag_id == query.upper(),
        func.lower(Profile.email) == query.lower(),
        Profile.phone == normalize_phone(query),
    )
    for condition in conditions:
        rows = db.query(Profile).filter(condition).limit(2).all()
        if len(rows) == 1:
            return rows[0]
        if len(rows) > 1:
            logger.warning("Ambiguous profile lookup; refusing to pick one")
            break
    raise NotFound("no user found with the provided CareBag ID, email, or phone")


def get_partner(db: Session, partner_id: str) -> Partner:
    partner = db.query(Partner).filter(Partner.id == partner_id).first()
    if not partner:
        raise NotFound("partner not found")
    return partner


def get_link(db: Session, partner_id: str, profile_id: str) -> Optional[PartnerUser]:
    return (
        db.query(PartnerUser)
        .filter(PartnerUser.partner_id == partner_id, PartnerUser.profile_id == profile_id)
        .first()
    )


def is_linked(db: Session, partner_id: str, profile_id: str) -> bool:
    link = get_link(db, partner_id, profile_id)
    return link is not None and link.is_active


def can_act_on(db: Session, partner_id: str, profile_id: str) -> bool:
    """Whether a partner may act on a profile's records, e.g. upload documents."""
    with store_errors(db):
        return is_linked(db, partner_id, profile_id)


def search_subject(db: Session, partner_id: str, candidate: str):
    with store_errors(db):
        get_partner(db, partner_id)
        profile = resolve_subject(db, candidate)
        return profile, is_linked(db, partner_id, profile.id)


def list_links(db: Session, partner_id: str):
    with store_errors(db):
        return (
            db.query(PartnerUser)
            .filter(
                PartnerUser.partner_id == partner_id,
                PartnerUser.consent_given.is_(True),
                PartnerUser.revoked_at.is_(None),
            )
            .order_by(PartnerUser.linked_at.desc())
            .all()
        )


# --- link materialization

def _upsert_link(db: Session, partner_id: str, profile_id: str, now: datetime) -> PartnerUser:
    link = get_link(db, partner_id, profile_id)
    if link is None:
        link = PartnerUser(id=gen_uuid(), partner_id=partner_id, profile_id=profile_id,
                           consent_given=True, consent_timestamp=now, linked_at=now)
        db.add(link)
    elif not link.is_active:
        link.consent_given = True
        link.consent_timestamp = now
        link.linked_at = now
        link.revoked_at = None
    return link


def materialize_link(db: Session, partner_id: str, profile_id: str, now: datetime, via: str) -> PartnerUser:
    try:
        link = _upsert_link(db, partner_id, profile_id, now)
        db.add(Audit(actor=partner_id, action="link", target=profile_id, ts=now, meta={"via": via}))
        db.commit()
    except IntegrityError:
        # a concurrent confirmation inserted the row first; fall through to the update path
        db.rollback()
        with store_errors(db):
            link = _upsert_link(db, partner_id, profile_id, now)
            db.commit()
    logger.info("Partner %s linked to profile %s via %s", partner_id, profile_id, via)
    return link


# --- workflow

def request_link(db: Session, partner_id: str, candidate: str, notifier,
                 now: Optional[datetime] = None) -> LinkRequestResult:
    now = now or datetime.utcnow()
    with store_errors(db):
        partner = get_partner(db, partner_id)
        profile = resolve_subject(db, candidate)
        profile_id = profile.id
        if is_linked(db, partner_id, profile_id):
            raise AlreadyLinked()
        decision, reason = policy.evaluate_link_request(partner, profile)
        logger.debug("Link request partner=%s profile=%s decision=%s", partner_id, profile_id, reason)

        if decision is policy.LinkDecision.OWNED:
            materialize_link(db, partner_id, profile_id, now, via="ownership")
            return LinkRequestResult(LinkStatus.LINKED, profile_id)
        if decision is policy.LinkDecision.NOT_LINKABLE:
            raise NotLinkable()
        db.rollback()

    handle = issue_challenge(db, partner_id, profile_id, notifier, now=now)
    return LinkRequestResult(LinkStatus.CHALLENGE_SENT, profile_id, handle)


def confirm_link(db: Session, partner_id: str, profile_id: str, code: str,
                 now: Optional[datetime] = None) -> LinkStatus:
    now = now or datetime.utcnow()
    if verify_challenge(db, partner_id, profile_id, code, now=now) is Outcome.VERIFIED:
        with store_errors(db):
            materialize_link(db, partner_id, profile_id, now, via="otp")
        return LinkStatus.LINKED

    # A verified code whose link write failed (or was already done) may be replayed
    # until it expires, but never across an unlink.
    with store_errors(db):
        link = get_link(db, partner_id, profile_id)
        cutoff = link.revoked_at if link is not None else None
        if find_verified_challenge(db, partner_id, profile_id, code, now=now, created_after=cutoff) is None:
            raise InvalidCode()
        if link is not None and link.is_active:
            return LinkStatus.LINKED
        materialize_link(db, partner_id, profile_id, now, via="otp_retry")
    return LinkStatus.LINKED


def unlink(db: Session, partner_id: str, profile_id: str, now: Optional[datetime] = None) -> bool:
    """Revoke an active link. Returns False when there was nothing to revoke."""
    now = now or datetime.utcnow()
    with store_errors(db):
        link = get_link(db, partner_id, profile_id)
        if link is None or not link.is_active:
            return False
        link.revoked_at = now
        db.add(Audit(actor=partner_id, action="unlink", target=profile_id, ts=now))
        db.commit()
    logger.info("Partner %s unlinked profile %s", partner_id, profile_id)
    return True


def create_partner_profile(db: Session, partner_id: str, name: str, email: Optional[str] = None,
                           phone: Optional[str] = None, now: Optional[datetime] = None) -> Profile:
    """
    Register a new profile on a partner's behalf and link it straight away.
    The profile has no owning user account until the patient claims it.
    """
    now = now or datetime.utcnow()
    with store_errors(db):
        get_partner(db, partner_id)
        carebag_id = generate_carebag_id()
        while db.query(Profile.id).filter(Profile.carebag_id == carebag_id).first() is not None:
            carebag_id = generate_carebag_id()
        profile = Profile(
            id=gen_uuid(),
            name=name.strip(),
            carebag_id=carebag_id,
            email=email.strip() if email else None,
            phone=normalize_phone(phone) if phone else None,
            user_id=None,
            created_by_partner_id=partner_id,
            created_at=now,
        )
        db.add(profile)
        db.add(PartnerUser(id=gen_uuid(), partner_id=partner_id, profile_id=profile.id,
                           consent_given=True, consent_timestamp=now, linked_at=now))
        db.add(Audit(actor=partner_id, action="create_profile", target=profile.id, ts=now))
        db.add(Audit(actor=partner_id, action="link", target=profile.id, ts=now,
                     meta={"via": "created_by_partner"}))
        db.commit()
        profile_id = profile.id
    logger.info("Partner %s created profile %s", partner_id, profile_id)
    return profile

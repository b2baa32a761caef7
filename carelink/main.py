from contextlib import asynccontextmanager
from datetime import datetime
from typing import List

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from carelink import grants, linking, schemas
from carelink.auth import Identity, current_doctor, current_partner, get_identity
from carelink.db import get_db, init_db
from carelink.errors import LinkError, RateLimited
from carelink.logging_config import configure_logging
from carelink.models import Doctor, Partner
from carelink.notifications import EmailNotifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="CareLink - consent linking and doctor access", lifespan=lifespan)


def get_notifier():
    return EmailNotifier()


@app.exception_handler(LinkError)
async def link_error_handler(request: Request, exc: LinkError):
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail},
                        headers=headers)


@app.get("/health")
def health():
    return {"ok": True}


def _grant_out(grant, now):
    return schemas.GrantOut(
        grant_id=grant.grant_id,
        profile_id=grant.profile_id,
        expires_at=grant.expires_at,
        is_revoked=grant.is_revoked,
        is_valid=grants.is_valid(grant, now),
        expiring_soon=grants.is_expiring_soon(grant, now),
        time_remaining=grants.format_time_remaining(grant, now),
    )


# --- Partner: search a patient by CareBag ID, email or phone
@app.post("/partners/me/search", response_model=schemas.SearchOut)
def search(payload: schemas.SearchIn, partner: Partner = Depends(current_partner), db: Session = Depends(get_db)):
    profile, linked = linking.search_subject(db, partner.id, payload.query)
    return {"profile_id": profile.id, "name": profile.name, "carebag_id": profile.carebag_id,
            "already_linked": linked}


# --- Partner: request a link (sends an OTP to the patient unless no challenge is needed)
@app.post("/partners/me/links", response_model=schemas.LinkRequestOut)
def request_link(payload: schemas.LinkRequestIn, partner: Partner = Depends(current_partner),
                 db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    result = linking.request_link(db, partner.id, payload.query, notifier)
    challenge = None
    if result.challenge is not None:
        challenge = schemas.ChallengeOut(challenge_id=result.challenge.challenge_id,
                                         expires_at=result.challenge.expires_at,
                                         delivered_to=result.challenge.delivered_to)
    return {"status": result.status.value, "profile_id": result.profile_id, "challenge": challenge}


# --- Partner: confirm a link with the code the patient received
@app.post("/partners/me/links/{profile_id}/confirm", response_model=schemas.ConfirmOut)
def confirm_link(profile_id: str, payload: schemas.ConfirmIn, partner: Partner = Depends(current_partner),
                 db: Session = Depends(get_db)):
    status = linking.confirm_link(db, partner.id, profile_id, payload.code)
    return {"status": status.value, "profile_id": profile_id}


@app.get("/partners/me/links", response_model=List[schemas.LinkOut])
def list_links(partner: Partner = Depends(current_partner), db: Session = Depends(get_db)):
    return [
        {"profile_id": link.profile_id, "name": link.profile.name, "carebag_id": link.profile.carebag_id,
         "consent_timestamp": link.consent_timestamp, "linked_at": link.linked_at}
        for link in linking.list_links(db, partner.id)
    ]


@app.delete("/partners/me/links/{profile_id}")
def unlink(profile_id: str, partner: Partner = Depends(current_partner), db: Session = Depends(get_db)):
    removed = linking.unlink(db, partner.id, profile_id)
    return JSONResponse({"ok": True, "removed": removed})


# --- Partner: register a new patient and link it immediately
@app.post("/partners/me/profiles", response_model=schemas.PartnerProfileOut, status_code=201)
def create_profile(payload: schemas.PartnerProfileIn, partner: Partner = Depends(current_partner),
                   db: Session = Depends(get_db)):
    profile = linking.create_partner_profile(db, partner.id, payload.name, payload.email, payload.phone)
    return {"profile_id": profile.id, "carebag_id": profile.carebag_id}


# --- Patient: share record access with a doctor for a fixed number of hours
@app.post("/profiles/{profile_id}/grants", response_model=schemas.GrantOut, status_code=201)
def issue_grant(profile_id: str, payload: schemas.GrantIn, identity: Identity = Depends(get_identity),
                db: Session = Depends(get_db)):
    now = datetime.utcnow()
    grant = grants.issue_grant(db, identity.subject_id, payload.doctor_id, profile_id, payload.hours, now=now)
    return _grant_out(grant, now)


@app.post("/grants/{grant_id}/revoke", response_model=schemas.GrantOut)
def revoke_grant(grant_id: str, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    now = datetime.utcnow()
    grant = grants.revoke_grant(db, identity.subject_id, grant_id, now=now)
    return _grant_out(grant, now)


# --- Doctor: grants currently usable, most urgent first
@app.get("/doctors/me/grants", response_model=schemas.GrantList)
def my_grants(doctor: Doctor = Depends(current_doctor), db: Session = Depends(get_db)):
    now = datetime.utcnow()
    return {"grants": [_grant_out(g, now) for g in grants.list_valid_grants_for(db, doctor.id, now)]}


@app.get("/doctors/me/profiles/{profile_id}/access", response_model=schemas.AccessOut)
def record_access(profile_id: str, doctor: Doctor = Depends(current_doctor), db: Session = Depends(get_db)):
    return {"profile_id": profile_id, "allowed": grants.can_view_records(db, doctor.id, profile_id)}

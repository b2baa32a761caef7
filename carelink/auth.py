"""Bearer-token identity and role checks for the API."""
from dataclasses import dataclass
from typing import FrozenSet

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from carelink.db import get_db
from carelink.models import Partner, Doctor
from carelink.utils import verify_token

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    subject_id: str
    roles: FrozenSet[str]


def get_identity(credentials: HTTPAuthorizationCredentials = Depends(bearer)) -> Identity:
    if credentials is None:
        raise HTTPException(401, "missing bearer token")
    claims = verify_token(credentials.credentials)
    if not claims.get("sub"):
        raise HTTPException(401, "invalid token")
    return Identity(claims["sub"], frozenset(claims.get("roles") or ()))


def require_role(role: str):
    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        if role not in identity.roles:
            raise HTTPException(403, f"{role} role required")
        return identity
    return dependency


def current_partner(identity: Identity = Depends(require_role("partner")), db: Session = Depends(get_db)) -> Partner:
    partner = db.query(Partner).filter(Partner.user_id == identity.subject_id).first()
    if not partner:
        raise HTTPException(403, "no partner account for this user")
    return partner


def current_doctor(identity: Identity = Depends(require_role("doctor")), db: Session = Depends(get_db)) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.user_id == identity.subject_id).first()
    if not doctor:
        raise HTTPException(403, "no doctor account for this user")
    return doctor

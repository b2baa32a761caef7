from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
import datetime
import uuid
from carelink.db import Base

def gen_uuid():
    return str(uuid.uuid4())

class Profile(Base):
    """A patient record; the subject of links and grants."""
    __tablename__ = "profiles"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    carebag_id = Column(String, unique=True, nullable=True)  # external short code
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    user_id = Column(String, nullable=True, index=True)  # owning account; null for partner-created rows
    created_by_partner_id = Column(String, ForeignKey("partners.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

class Partner(Base):
    __tablename__ = "partners"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    last_challenge_at = Column(DateTime, nullable=True)  # stamped under lock on each OTP issuance

    links = relationship("PartnerUser", back_populates="partner")

class Doctor(Base):
    __tablename__ = "doctors"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

class PartnerOtpRequest(Base):
    """One OTP challenge. Rows are never deleted; `verified` only goes false -> true."""
    __tablename__ = "partner_otp_requests"
    __table_args__ = (
        Index("ix_otp_pair_created", "partner_id", "profile_id", "created_at"),
    )
    id = Column(String, primary_key=True, default=gen_uuid)
    partner_id = Column(String, ForeignKey("partners.id"), nullable=False)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    otp_code = Column(String, nullable=False)  # keyed hash of the code
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)


class PartnerUser(Base):
    """Consent link between a partner and a profile."""
    __tablename__ = "partner_users"
    __table_args__ = (
        UniqueConstraint("partner_id", "profile_id", name="uq_partner_profile"),
    )
    id = Column(String, primary_key=True, default=gen_uuid)
    partner_id = Column(String, ForeignKey("partners.id"), nullable=False)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    consent_given = Column(Boolean, default=True, nullable=False)
    consent_timestamp = Column(DateTime, nullable=True)
    linked_at = Column(DateTime, default=datetime.datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)

    partner = relationship("Partner", back_populates="links")
    profile = relationship("Profile")

    @property
    def is_active(self):
        return bool(self.consent_given) and self.revoked_at is None

class DoctorAccess(Base):
    __tablename__ = "doctor_access"
    id = Column(String, primary_key=True, default=gen_uuid)
    doctor_id = Column(String, ForeignKey("doctors.id"), nullable=False, index=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    granted_by_user_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)

    profile = relationship("Profile")

class Audit(Base):
    __tablename__ = "audit"
    event_id = Column(String, primary_key=True, default=gen_uuid)
    actor = Column(String)
    action = Column(String)
    target = Column(String)
    ts = Column(DateTime, default=datetime.datetime.utcnow)
    meta = Column(JSON, default=dict)

import hmac, hashlib, secrets, time

from jose import jwt, JWTError
from carelink.config import SIGN_KEY, JWT_ALG

OTP_DIGITS = 6
CAREBAG_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

def create_access_token(subject: str, roles=(), ttl_minutes: int = 60) -> str:
    """Mint a bearer token the way the identity provider does. Used by tooling and tests."""
    now = int(time.time())
    payload = {"sub": subject, "roles": list(roles), "iat": now, "exp": now + ttl_minutes * 60}
    return jwt.encode(payload, SIGN_KEY, algorithm=JWT_ALG)

def verify_token(token: str) -> dict:
    try:
        return jwt.decode(token, SIGN_KEY, algorithms=[JWT_ALG])
    except JWTError:
        return {}

def generate_otp() -> str:
    # secrets.randbelow is uniform over 000000..999999; zero-pad keeps leading zeros
    return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"

def is_well_formed_otp(code) -> bool:
    return isinstance(code, str) and len(code) == OTP_DIGITS and code.isascii() and code.isdigit()

def hash_code(code: str) -> str:
    """Keyed hash for storing OTP codes at rest."""
    return hmac.new(SIGN_KEY.encode(), code.encode(), hashlib.sha256).hexdigest()

def generate_carebag_id(prefix: str = "CB") -> str:
    return prefix + "".join(secrets.choice(CAREBAG_ALPHABET) for _ in range(8))

def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}***@{domain}"

def normalize_phone(phone: str) -> str:
    return "".join(phone.split())

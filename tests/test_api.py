from datetime import datetime, timedelta

from carelink.models import DoctorAccess, gen_uuid

from conftest import auth_header

PARTNER = auth_header("user-partner", "partner")
DOCTOR = auth_header("user-doctor", "doctor")
PATIENT = auth_header("user-patient")


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_partner_routes_need_a_partner_token(client, partner):
    assert client.get("/partners/me/links").status_code == 401
    assert client.get("/partners/me/links", headers={"Authorization": "Bearer junk"}).status_code == 401
    assert client.get("/partners/me/links", headers=DOCTOR).status_code == 403
    assert client.get("/partners/me/links", headers=auth_header("user-nobody", "partner")).status_code == 403


def test_link_flow_over_http(client, partner, patient, notifier):
    r = client.post("/partners/me/search", json={"query": "cbk7q2m9px"}, headers=PARTNER)
    assert r.status_code == 200
    assert r.json()["already_linked"] is False

    r = client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "challenge_sent"
    assert body["challenge"]["delivered_to"] == "as***@example.com"
    assert notifier.last_code not in r.text

    r = client.post(f"/partners/me/links/{patient.id}/confirm", json={"code": notifier.last_code}, headers=PARTNER)
    assert r.json() == {"status": "linked", "profile_id": patient.id}

    links = client.get("/partners/me/links", headers=PARTNER).json()
    assert [link["profile_id"] for link in links] == [patient.id]

    r = client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER)
    assert r.status_code == 409
    assert r.json()["error"] == "already_linked"

    r = client.delete(f"/partners/me/links/{patient.id}", headers=PARTNER)
    assert r.json() == {"ok": True, "removed": True}
    assert client.get("/partners/me/links", headers=PARTNER).json() == []


def test_invalid_code_response_does_not_leak_cause(client, partner, patient, make_profile, notifier):
    client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER)
    wrong = "%06d" % ((int(notifier.last_code) + 1) % 1000000)

    wrong_code = client.post(f"/partners/me/links/{patient.id}/confirm", json={"code": wrong}, headers=PARTNER)
    never_issued = client.post("/partners/me/links/unknown/confirm", json={"code": "123456"}, headers=PARTNER)
    malformed = client.post(f"/partners/me/links/{patient.id}/confirm", json={"code": "12"}, headers=PARTNER)

    assert wrong_code.status_code == never_issued.status_code == malformed.status_code == 400
    assert wrong_code.json() == never_issued.json() == malformed.json()
    assert wrong_code.json()["error"] == "invalid_code"


def test_rate_limit_over_http(client, partner, patient):
    for _ in range(3):
        assert client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER).status_code == 200
    r = client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER)
    assert r.status_code == 429
    assert r.json()["error"] == "rate_limited"
    assert int(r.headers["Retry-After"]) > 0


def test_terminal_errors_over_http(client, partner, make_profile, notifier):
    make_profile(carebag_id="CBNOMAIL22")
    make_profile(email="unregistered@example.com")

    r = client.post("/partners/me/links", json={"query": "CBNOMAIL22"}, headers=PARTNER)
    assert (r.status_code, r.json()["error"]) == (422, "no_delivery_channel")
    r = client.post("/partners/me/links", json={"query": "unregistered@example.com"}, headers=PARTNER)
    assert (r.status_code, r.json()["error"]) == (403, "not_linkable")
    r = client.post("/partners/me/links", json={"query": "nobody@example.com"}, headers=PARTNER)
    assert (r.status_code, r.json()["error"]) == (404, "not_found")


def test_delivery_failure_over_http(client, partner, patient, notifier):
    notifier.fail = True
    r = client.post("/partners/me/links", json={"query": "CBK7Q2M9PX"}, headers=PARTNER)
    assert r.status_code == 503
    assert r.json()["error"] == "unavailable"


def test_partner_creates_linked_profile(client, partner):
    r = client.post("/partners/me/profiles", json={"name": "Ravi Kumar", "email": "ravi@example.com"},
                    headers=PARTNER)
    assert r.status_code == 201
    profile_id = r.json()["profile_id"]
    links = client.get("/partners/me/links", headers=PARTNER).json()
    assert links[0]["profile_id"] == profile_id
    assert links[0]["carebag_id"] == r.json()["carebag_id"]


def test_doctor_grant_lifecycle(client, db, doctor, patient):
    r = client.post(f"/profiles/{patient.id}/grants", json={"doctor_id": doctor.id, "hours": 1}, headers=PATIENT)
    assert r.status_code == 201
    grant = r.json()
    assert grant["is_valid"] is True
    assert grant["expiring_soon"] is True

    access = client.get(f"/doctors/me/profiles/{patient.id}/access", headers=DOCTOR).json()
    assert access == {"profile_id": patient.id, "allowed": True}

    r = client.post(f"/grants/{grant['grant_id']}/revoke", headers=PATIENT)
    assert r.json()["is_revoked"] is True
    assert r.json()["is_valid"] is False
    assert client.get(f"/doctors/me/profiles/{patient.id}/access", headers=DOCTOR).json()["allowed"] is False


def test_grant_needs_owner(client, doctor, patient):
    r = client.post(f"/profiles/{patient.id}/grants", json={"doctor_id": doctor.id}, headers=PARTNER)
    assert (r.status_code, r.json()["error"]) == (403, "forbidden")
    r = client.post(f"/profiles/{patient.id}/grants", json={"doctor_id": doctor.id, "hours": 0}, headers=PATIENT)
    assert r.status_code == 422


def test_doctor_grants_sorted_by_urgency(client, db, doctor, patient):
    now = datetime.utcnow()
    for delta in (timedelta(minutes=10), timedelta(hours=3), timedelta(hours=1), -timedelta(minutes=5)):
        db.add(DoctorAccess(id=gen_uuid(), doctor_id=doctor.id, profile_id=patient.id,
                            granted_by_user_id="user-patient", created_at=now, expires_at=now + delta))
    db.commit()

    listed = client.get("/doctors/me/grants", headers=DOCTOR).json()["grants"]
    assert len(listed) == 3
    assert [g["expiring_soon"] for g in listed] == [True, True, False]
    assert listed[0]["time_remaining"].endswith("m remaining")
    expiries = [g["expires_at"] for g in listed]
    assert expiries == sorted(expiries)

import enum


class LinkDecision(str, enum.Enum):
    OWNED = "owned"
    NOT_LINKABLE = "not_linkable"
    CHALLENGE = "challenge"


def owns_profile(partner, profile) -> bool:
    if profile.created_by_partner_id and profile.created_by_partner_id == partner.id:
        return True
    return bool(profile.user_id) and profile.user_id == partner.user_id


def evaluate_link_request(partner, profile):
    """
    Decide how a partner may link to a profile it is not yet linked to.
    Ownership wins over everything; a record that was never independently
    registered (no CareBag ID) cannot be claimed remotely; anything else needs
    the patient to confirm with a one-time code.
    """
    if owns_profile(partner, profile):
        return LinkDecision.OWNED, "owned_by_requester"
    if not profile.carebag_id:
        return LinkDecision.NOT_LINKABLE, "unregistered_record"
    return LinkDecision.CHALLENGE, "consent_required"


def can_issue_grant(user_id: str, profile) -> bool:
    """Only the account that owns a profile may hand out doctor access to it."""
    return bool(profile.user_id) and profile.user_id == user_id

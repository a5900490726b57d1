# storefront/services/campaign_service.py
"""
Ad campaigns: a subject and message mailed to a chosen list of customers.
"""
from datetime import datetime, timedelta

from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import AdCampaign, AdCampaignUser, User
from .coupon_service import parse_iso8601
from .mail_service import send_mail
from .report_service import parse_day

REQUIRED_FIELDS = ("name", "subject", "message", "start_date", "end_date", "user_ids")
SEARCH_DATES = ("from_start_date", "to_start_date", "from_end_date", "to_end_date")


def _resolve_user_ids(user_ids):
    if not isinstance(user_ids, (list, tuple)):
        raise ApiError("user_ids must be a list of ids", 400)
    try:
        ids = {int(v) for v in user_ids}
    except (TypeError, ValueError):
        raise ApiError("user_ids must be a list of ids", 400)
    known = {uid for (uid,) in db.session.query(User.id).filter(User.id.in_(ids)).all()} if ids else set()
    missing = ids - known
    if missing:
        raise ApiError("Unknown user ids", 422, {"user_ids": sorted(missing)})
    return ids


def search_campaigns(args) -> list[AdCampaign]:
    """
    name, subject, message -> substring match
    from/to_start_date, from/to_end_date -> YYYY-MM-DD, inclusive
    user_id -> campaigns that include this user
    """
    q = AdCampaign.query
    for field in ("name", "subject", "message"):
        value = (args.get(field) or "").strip()
        if value:
            q = q.filter(getattr(AdCampaign, field).ilike(f"%{value}%"))

    days = {k: parse_day(args.get(k), k) for k in SEARCH_DATES}
    if days["from_start_date"]:
        q = q.filter(AdCampaign.start_date >= days["from_start_date"])
    if days["to_start_date"]:
        q = q.filter(AdCampaign.start_date < days["to_start_date"] + timedelta(days=1))
    if days["from_end_date"]:
        q = q.filter(AdCampaign.end_date >= days["from_end_date"])
    if days["to_end_date"]:
        q = q.filter(AdCampaign.end_date < days["to_end_date"] + timedelta(days=1))

    user_id = args.get("user_id")
    if user_id:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise ApiError("user_id must be an integer", 400)
        q = q.filter(AdCampaign.recipients.any(AdCampaignUser.user_id == user_id))

    return q.order_by(AdCampaign.start_date.desc(), AdCampaign.id.desc()).all()


def get_campaign(campaign_id) -> AdCampaign:
    campaign = db.session.get(AdCampaign, campaign_id)
    if not campaign:
        raise ApiError("Campaign not found", 404)
    return campaign


def save_campaign(data: dict):
    """Create a campaign, or update the one named by ``id``. Returns ``(campaign, created)``."""
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ApiError(f"Missing required fields: {', '.join(missing)}", 400)

    start_date = parse_iso8601(data.get("start_date"))
    end_date = parse_iso8601(data.get("end_date"))
    if not start_date or not end_date:
        raise ApiError("start_date and end_date must be ISO-8601 dates", 400)
    if end_date < start_date:
        raise ApiError("end_date must not be before start_date", 400)
    user_ids = _resolve_user_ids(data["user_ids"])

    created = not data.get("id")
    if created:
        campaign = AdCampaign()
        db.session.add(campaign)
    else:
        campaign = get_campaign(int(data["id"]))

    campaign.name = str(data["name"]).strip()
    campaign.subject = str(data["subject"]).strip()
    campaign.message = str(data["message"])
    campaign.image_url = (data.get("image_url") or "").strip() or None
    campaign.start_date = start_date
    campaign.end_date = end_date

    # recipients are matched by user, so re-saving keeps the existing rows
    for row in list(campaign.recipients):
        if row.user_id not in user_ids:
            campaign.recipients.remove(row)
    existing = set(campaign.user_ids)
    for uid in sorted(user_ids - existing):
        campaign.recipients.append(AdCampaignUser(user_id=uid))

    db.session.commit()
    log.info("campaign %s id=%s users=%s", "created" if created else "updated", campaign.id, len(user_ids))
    return campaign, created


def delete_campaign(campaign: AdCampaign):
    campaign_id = campaign.id
    db.session.delete(campaign)
    db.session.commit()
    log.info("campaign deleted id=%s", campaign_id)


def send_campaign(campaign: AdCampaign) -> dict:
    """Mail the campaign to each recipient. Users without an email are skipped."""
    recipients = [r.user for r in campaign.recipients]
    sent = 0
    for user in recipients:
        if send_mail(
            user.email,
            campaign.subject,
            "campaign",
            name=user.name,
            message=campaign.message,
            image_url=campaign.image_url,
        ):
            sent += 1

    campaign.last_sent_at = datetime.utcnow()
    db.session.commit()
    log.info("campaign sent id=%s recipients=%s sent=%s", campaign.id, len(recipients), sent)
    return {"recipients": len(recipients), "sent": sent}

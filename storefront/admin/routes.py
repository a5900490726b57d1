# storefront/admin/routes.py
from datetime import datetime

from flask import request, send_file

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..model import Message, Order, User, UserAddress
from ..services import campaign_service, report_service
from ..services.order_service import order_api, update_status
from ..services.mail_service import send_mail
from ..services.user_service import phone_key, save_user, set_role
from ..utils.api import ok
from ..utils.decorators import admin_required

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _filters():
    return report_service.parse_filters(request.get_json(silent=True) or {})


@bp.post("/dashboard-kpis")
@admin_required
def dashboard_kpis():
    return ok("Dashboard KPIs", report_service.dashboard_kpis(_filters()))


@bp.post("/chart-data")
@admin_required
def chart_data():
    return ok("Chart data", report_service.chart_data(_filters()))


@bp.post("/orders")
@admin_required
def fetch_orders():
    return ok("Orders fetched", {"orders": report_service.fetch_orders(_filters())})


@bp.patch("/orders/<int:order_id>/status")
@admin_required
def update_order_status(order_id):
    order = db.session.get(Order, order_id)
    if not order:
        raise ApiError("Order not found", 404)
    order = update_status(order, request.get_json(silent=True) or {})
    return ok("Order status updated", order_api(order))


@bp.post("/orders/export")
@admin_required
def export_orders():
    output = report_service.export_orders(_filters())
    return send_file(
        output,
        as_attachment=True,
        download_name=f"orders_{datetime.utcnow():%Y%m%d}.xlsx",
        mimetype=XLSX_MIMETYPE,
    )


@bp.get("/users")
@admin_required
def list_users():
    """
    name  -> substring match
    phone -> last ten digits
    email -> substring match
    role  -> user | admin
    """
    q = User.query
    name = (request.args.get("name") or "").strip()
    phone = (request.args.get("phone") or "").strip()
    email = (request.args.get("email") or "").strip()
    role = (request.args.get("role") or "").strip().lower()
    if name:
        q = q.filter(User.name.ilike(f"%{name}%"))
    if phone:
        q = q.filter(User.phone_key == phone_key(phone))
    if email:
        q = q.filter(User.email.ilike(f"%{email}%"))
    if role:
        q = q.filter(User.role == role)

    users = q.order_by(User.id.asc()).all()
    defaults = {}
    if users:
        rows = UserAddress.query.filter(
            UserAddress.user_id.in_([u.id for u in users]),
            UserAddress.is_default.is_(True),
        ).all()
        defaults = {a.user_id: a for a in rows}
    items = [
        {**u.as_dict(), "default_address": defaults[u.id].as_api() if u.id in defaults else None}
        for u in users
    ]
    return ok("OK", {"users": items})


@bp.patch("/users/<int:user_id>/role")
@admin_required
def update_user_role(user_id):
    body = request.get_json(silent=True) or {}
    target = db.session.get(User, user_id)
    if not target:
        raise ApiError("User not found", 404)

    set_role(target, body.get("role"))
    db.session.commit()
    return ok("Role updated", {"user": target.as_dict()})


@bp.post("/users")
@admin_required
def save_user_with_addresses():
    """
    Body: { user: {id?, name, phone, email?, username?, password?, role?, reset_password?},
            addresses: [{id?, name?, address_line1, city, state, country?, pincode, phone?, is_default?}] }
    """
    user, created, otp_issued = save_user(request.get_json(silent=True) or {})
    if otp_issued:
        send_mail(
            user.email,
            "Your OTP to set your password",
            "otp",
            name=user.name,
            otp=user.otp,
            email=user.email,
            phone=user.phone,
        )
    data = {"user": user.as_dict(), "addresses": [a.as_api() for a in user.addresses]}
    return ok("User created" if created else "User updated", data, 201 if created else 200)


# ---- ad campaigns ----------------------------------------------------------

@bp.get("/campaigns")
@admin_required
def list_campaigns():
    campaigns = campaign_service.search_campaigns(request.args)
    return ok("Campaigns fetched", {"campaigns": [c.as_api() for c in campaigns]})


@bp.get("/campaigns/<int:campaign_id>")
@admin_required
def get_campaign(campaign_id):
    campaign = campaign_service.get_campaign(campaign_id)
    return ok("Campaign fetched", {"campaign": campaign.as_api(with_users=True)})


@bp.post("/campaigns")
@admin_required
def save_campaign():
    """
    Body: { id?, name, subject, message, start_date, end_date, user_ids: [..], image_url? }
    """
    campaign, created = campaign_service.save_campaign(request.get_json(silent=True) or {})
    msg = "Campaign created successfully." if created else "Campaign updated successfully."
    return ok(msg, {"campaign": campaign.as_api(with_users=True)}, 201 if created else 200)


@bp.delete("/campaigns/<int:campaign_id>")
@admin_required
def delete_campaign(campaign_id):
    campaign_service.delete_campaign(campaign_service.get_campaign(campaign_id))
    return ok("Campaign deleted successfully.")


@bp.post("/campaigns/<int:campaign_id>/send")
@admin_required
def send_campaign(campaign_id):
    result = campaign_service.send_campaign(campaign_service.get_campaign(campaign_id))
    return ok(f"Emails sent to {result['sent']} of {result['recipients']} users.", result)


@bp.get("/messages")
@admin_required
def list_messages():
    messages = Message.query.order_by(Message.id.desc()).all()
    return ok("Messages fetched", {"messages": [m.as_api() for m in messages]})

# storefront/model/campaign.py
from sqlalchemy.sql import func

from ..extensions import db


class AdCampaign(db.Model):
    __tablename__ = "adcampaigns"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.String(512))
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    last_sent_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    recipients = db.relationship(
        "AdCampaignUser",
        backref="campaign",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AdCampaignUser.user_id.asc()",
    )

    @property
    def user_ids(self):
        return [r.user_id for r in self.recipients]

    def as_api(self, with_users=False):
        data = {
            "id": self.id,
            "name": self.name,
            "subject": self.subject,
            "message": self.message,
            "image_url": self.image_url,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "last_sent_at": self.last_sent_at.isoformat() if self.last_sent_at else None,
            "user_ids": self.user_ids,
        }
        if with_users:
            data["users"] = [
                {"id": r.user.id, "name": r.user.name, "email": r.user.email, "phone": r.user.phone}
                for r in self.recipients
            ]
        return data


class AdCampaignUser(db.Model):
    __tablename__ = "adcampaignusers"
    __table_args__ = (db.UniqueConstraint("campaign_id", "user_id", name="uq_adcampaign_user"),)

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey("adcampaigns.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    user = db.relationship("User", lazy="joined")

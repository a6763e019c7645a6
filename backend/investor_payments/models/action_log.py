"""
SIP Action Log Model — append-only history of subscription actions.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime

from investor_payments.database import Base


class SipActionLog(Base):
    __tablename__ = "sip_action_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    subscription_id = Column(String(64), nullable=False, index=True)

    action = Column(String(16), nullable=False)   # CREATE | PAUSE | ACTIVATE | CANCEL | STATUS_SYNC
    reason = Column(String(512))
    source = Column(String(16), default="API")    # API | WEBHOOK | SYNC

    status_before = Column(String(32))
    status_after = Column(String(32))

    performed_at = Column(DateTime, default=datetime.utcnow)

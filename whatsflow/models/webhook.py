# whatsflow/models/webhook.py
"""
Webhook activity logging model.
"""
from sqlalchemy import Column, String, Text, JSON
from whatsflow.models.base import BaseModel


class WebhookLog(BaseModel):
    """Log all webhook activity from Meta"""
    __tablename__ = "webhook_logs"

    # Events for unknown accounts have no owner
    user_id = Column(String(100), index=True, nullable=True)

    log_type = Column(String(50), index=True)  # 'message', 'status', 'ignored', 'error'
    phone = Column(String(50), nullable=True)
    message_id = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    context = Column(String(255), nullable=True)
    raw_data = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<WebhookLog {self.log_type} - {self.phone}>"

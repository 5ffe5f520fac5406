# app/models/__init__.py

from .audit import AuditLog, Notification, NotificationType
from .contact import Contact, ContactStatus
from .deliverable import Deliverable
from .dispute import Dispute, DisputeStatus
from .payment import Payment, PaymentStatus
from .request import Request, RequestStatus
from .request_file import RequestFile
from .service import Service
from .setting import SystemSetting
from .ticket import Ticket, TicketPriority, TicketReply, TicketStatus
from .user import Role, User

__all__ = [
    "AuditLog",
    "Contact",
    "ContactStatus",
    "Deliverable",
    "Dispute",
    "DisputeStatus",
    "Notification",
    "NotificationType",
    "Payment",
    "PaymentStatus",
    "Request",
    "RequestFile",
    "RequestStatus",
    "Role",
    "Service",
    "SystemSetting",
    "Ticket",
    "TicketPriority",
    "TicketReply",
    "TicketStatus",
    "User",
]

from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import UserSession
from .property import Property
from .booking import Booking, BookingStatus
from .booking_event import BookingEvent

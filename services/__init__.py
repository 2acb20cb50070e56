from .errors import BookingError
from .availability import BOUNDARY_INCLUSIVE, BOUNDARY_HANDOVER
from .bookings import Actor, BookingService

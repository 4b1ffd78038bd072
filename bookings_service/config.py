import os

# Booking rules
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
MIN_ATTENDEES = 1
MAX_ATTENDEES = 100
PURPOSE_MAX_LENGTH = 500
DESCRIPTION_MAX_LENGTH = 1000
REASON_MAX_LENGTH = 500

# Outbound collaborators (optional)
NOTIFICATIONS_SERVICE_URL = os.getenv("NOTIFICATIONS_SERVICE_URL")
HISTORY_SERVICE_URL = os.getenv("HISTORY_SERVICE_URL")
EVENT_SINK_TIMEOUT_SECONDS = float(os.getenv("EVENT_SINK_TIMEOUT_SECONDS", "2.0"))

# Rate limiting of mutating booking operations
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_LIMIT_WINDOW", "60"))
RATE_LIMIT_MAX_OPERATIONS = int(os.getenv("BOOKING_RATE_LIMIT_MAX", "20"))

AVAILABILITY_CACHE_PREFIX = "bookings:availability:"
AVAILABILITY_CACHE_TTL_SECONDS = 60

import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_URL = os.getenv("REDIS_URL", "")

# Empty means the rooms live in Redis only
DATABASE_URL = os.getenv("DATABASE_URL", "")

CRON_SECRET = os.getenv("CRON_SECRET", "")
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", 0))

# Cap on a room's total duration after extensions, 0 for no cap
ROOM_MAX_TOTAL_MINUTES = int(os.getenv("ROOM_MAX_TOTAL_MINUTES", 1440))

ROOM_CODE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_PATTERN = r"^[A-Z0-9]{3}-[A-Z0-9]{3}$"
MAX_CODE_ATTEMPTS = 10

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 1440
MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 50
DEFAULT_PARTICIPANTS = 5
MAX_NAME_LENGTH = 50
MAX_MESSAGE_LENGTH = 1000

MESSAGE_WINDOW = 100
DEFAULT_MESSAGE_LIMIT = 50

MESSAGE_EVENT = "incoming-message"

"""Shared tunables for the sorter, watcher and auto-detect scanner."""

CONFIG_FILE = "autosort.yml"
DB_NAME = "activity.db"

# --- Watcher ---

# Coalescing window for filesystem events before diffing the directory
EVENT_WINDOW_INTERVAL = 0.2

# Wait for file write completion before emitting a new-file event
DEBOUNCE_INTERVAL = 0.5

# --- Activity history ---

MAX_RECENT_ACTIVITY = 20

# --- Sessions ---

MIN_SESSION = 1
MAX_SESSION = 30
DEFAULT_SESSION_KEYWORDS = ("S", "Session", "Lecture", "Week", "Class")
DEFAULT_FOLDER_TEMPLATE = "Session {n}"

# --- Auto-detect ---

MAX_FILES_PER_FOLDER = 200

# --- Duplicate handling ---

MAX_RENAME_ATTEMPTS = 9999

# Seconds to wait for an answer to the duplicate prompt; None waits forever
DEFAULT_ASK_TIMEOUT = 300.0

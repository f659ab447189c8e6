STATE_DIR_NAME = ".taskboard"
CONFIG_FILE = "config.yaml"
BOARD_FILE = "board.yaml"
BOARD_LOCK_FILE = "board.lock"
ACTIVITY_FILE = "activity.jsonl"
ACTIVITY_LOCK_FILE = "activity.lock"

BOARD_SCHEMA_VERSION = 1
WINDOWS_LOCK_BYTES = 4096

# Order key defaults
DEFAULT_BASE_KEY = 1000.0
DEFAULT_KEY_GAP = 1000.0
DEFAULT_MIN_GAP = 0.001
DEFAULT_MAX_KEY = 1e12
DEFAULT_IRREGULARITY_RATIO = 100.0

# Client defaults
DEFAULT_ACTIVATION_DISTANCE = 8.0  # pixels
DEFAULT_REFETCH_RETRY_DELAY = 0.5  # seconds

ENV_REOPEN_ON_LEAVE_COMPLETED = "TASKBOARD_REOPEN_ON_LEAVE_COMPLETED"
ACTOR_HEADER = "X-Actor"

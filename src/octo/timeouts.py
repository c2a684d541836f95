"""Per-operation timeouts (seconds) for engine calls."""

TIMEOUT_PING = 5.0
TIMEOUT_LIST = 30.0
TIMEOUT_DISK_USAGE = 60.0
TIMEOUT_REMOVE = 30.0
TIMEOUT_ACTION = 10.0
TIMEOUT_PRUNE = 120.0
TIMEOUT_LOGS = 30.0
TIMEOUT_STATS = 10.0

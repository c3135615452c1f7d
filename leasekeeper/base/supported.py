from typing import Literal


existing_cloud_providers = Literal["aws"]

existing_stores = Literal["file", "memory"]


PENDING = "pending"
RUNNING = "running"
STOPPING = "stopping"
STOPPED = "stopped"
TERMINATING = "terminating"
TERMINATED = "terminated"

LIFECYCLE_STATES = frozenset(
    {PENDING, RUNNING, STOPPING, STOPPED, TERMINATING, TERMINATED}
)

# Never reconciled again once recorded.
TERMINAL_STATES = frozenset({TERMINATING, TERMINATED})

# Live states an expired lease must stop.
ACTIVE_STATES = frozenset({PENDING, RUNNING})

# Live states an unexpired lease must start.
HALTED_STATES = frozenset({STOPPING, STOPPED})

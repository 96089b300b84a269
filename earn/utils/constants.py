"""Shared constants: position statuses, transition graph, address formats."""

PENDING_DEPOSIT = "pending_deposit"
BRIDGING_TO_NEAR = "bridging_to_near"
LENDING_ACTIVE = "lending_active"
BRIDGING_TO_ZCASH = "bridging_to_zcash"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED, CANCELLED})

# Directed edges of the position lifecycle; nothing leaves a terminal status
TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING_DEPOSIT: frozenset({BRIDGING_TO_NEAR, CANCELLED}),
    BRIDGING_TO_NEAR: frozenset({LENDING_ACTIVE, FAILED}),
    LENDING_ACTIVE: frozenset({BRIDGING_TO_ZCASH}),
    BRIDGING_TO_ZCASH: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
    CANCELLED: frozenset(),
}

# Bridge leg bookkeeping
DIRECTION_TO_DESTINATION = "zcash_to_near"
DIRECTION_TO_SOURCE = "near_to_zcash"

# Watcher bookkeeping kinds
WATCH_DEPOSIT = "deposit"
WATCH_WITHDRAWAL = "withdrawal"

# Zcash address prefixes accepted at the API boundary
ZCASH_ADDRESS_PREFIXES = ("t1", "t3", "tm", "zs", "ztestsapling", "u1", "utest1")
MIN_ADDRESS_LENGTH = 20

DAY_SECONDS = 24 * 60 * 60

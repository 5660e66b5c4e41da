"""
Game constants shared by server and client.
All durations are in milliseconds unless the name says otherwise.
"""

# Time auction
DEFAULT_AUCTION_ROUNDS = 19
DEFAULT_TIME_BANK_MS = 10 * 60 * 1000  # 10 minutes
COUNTDOWN_DURATION_MS = 5000
TIE_TOLERANCE_MS = 100
BID_ROUNDING_MS = 100  # timeAuction2 records bids to 0.1s
AUTO_ADVANCE_MS = 5000  # timeAuction2 results screen

# Remove One
INITIAL_DECK = [1, 2, 3, 4, 5, 6, 7, 8]
CARDS_PER_SELECTION = 2
DEFAULT_REMOVE_ONE_ROUNDS = 18
DEFAULT_SURVIVAL_ROUNDS = [3, 6, 9, 12, 18]
DEFAULT_DECK_RESET_ROUNDS = [6, 12]

# Room limits
MIN_PLAYERS = 2
MAX_PLAYERS = 8
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Phase deadlines
WAITING_TIMEOUT_MS = 300_000
PHASE_GRACE_MS = 5000  # added to countdown and auction deadlines
RESULTS_TIMEOUT_MS = 120_000
CARD_SELECTION_TIMEOUT_MS = 120_000
FINAL_CHOICE_TIMEOUT_MS = 60_000
ROUND_END_TIMEOUT_MS = 120_000

# Presence (seconds)
HEARTBEAT_INTERVAL = 5.0
PRESENCE_STALE_AFTER = 15.0

# Coordinator polling (seconds)
POLL_INTERVAL = 0.1
POLL_JITTER = 0.02
SETTLE_DELAY = 0.5
RECONCILE_INTERVAL = 2.0

# Client local ticker (seconds)
LOCAL_TICK_INTERVAL = 0.05

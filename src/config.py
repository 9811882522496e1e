"""
Configuration constants for the live auction tracker.
"""

# ===== FEED (MyFantasyLeague transactions export) =====

MFL_HOST = "https://api.myfantasyleague.com"
MFL_LEAGUE_ID = '13522'
MFL_USER_AGENT = 'Mozilla/5.0 (compatible; FantasyLeague/1.0)'

# Transaction types that belong to the auction, mapped to event types
AUCTION_TRANSACTION_TYPES = {
    'AUCTION_INIT': 'INIT',
    'AUCTION_BID': 'BID',
    'AUCTION_WON': 'WON',
}

# Separator inside the transaction payload: "playerId|amount|"
PAYLOAD_SEPARATOR = '|'

# ===== POLLING =====

DEFAULT_POLL_INTERVAL = 15   # seconds between scheduled fetches
FETCH_TIMEOUT = 10           # seconds before a fetch counts as failed
BACKOFF_MAX_DELAY = 60       # cap for exponential backoff (15s, 30s, 60s)
MAX_CONSECUTIVE_FAILURES = 3 # breaker opens after this many failures in a row

# Seconds after the breaker opens before a half-open trial fetch is scheduled.
# None keeps scheduled polling halted until a manual refresh succeeds.
BREAKER_COOLDOWN = None

# ===== AUCTION STATE =====

RECENT_BIDS_CAP = 50         # Keep last 50 bids
COMPLETED_LOTS_CAP = 100     # Keep last 100 completions
ANOMALIES_CAP = 100

# A lot with no activity for this long is considered abandoned (10 minutes)
STALE_LOT_THRESHOLD = 600

# How long a bid for an unopened lot waits for its INIT (feed seconds)
PENDING_BID_WINDOW = 30

# ===== UI HIGHLIGHTS =====

RECENT_BID_TTL = 30          # seconds
SOLD_TTL = 120               # seconds
HIGHLIGHT_SWEEP_INTERVAL = 5 # seconds

# ===== NOTIFICATIONS =====

DEFAULT_NOTIFICATIONS_ENABLED = True
DEFAULT_SOUND_ENABLED = True
DEFAULT_NOTIFY_SCOPE = 'targetsOnly'   # 'all' or 'targetsOnly'
DEFAULT_MIN_AMOUNT_THRESHOLD = 0
DEFAULT_MAX_PER_MINUTE = 12            # Max 1 per 5 seconds
RATE_LIMIT_WINDOW = 60                 # seconds

# Predictions within this fraction of the winning bid count as accurate
PREDICTION_ACCURACY_TOLERANCE = 0.10

# ===== MODE =====

MODE_STATE_FILE = 'data/live_auction/mode.json'

# ===== API SERVER =====

API_HOST = '127.0.0.1'
API_PORT = 8000

# ===== LOGGING =====

LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

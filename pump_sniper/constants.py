from solders.pubkey import Pubkey

# ============================================
# PROGRAM IDS
# ============================================
PUMP_PROGRAM = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
TOKEN_PROGRAM = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

SOL_MINT = str(WSOL_MINT)
LAMPORTS_PER_SOL = 1_000_000_000

# ============================================
# PUMP.FUN TOKEN SHAPE
# ============================================
TOTAL_SUPPLY = 1_000_000_000          # UI units, every pump.fun token
TOKEN_DECIMALS = 6
TOKEN_UNIT = 10 ** TOKEN_DECIMALS     # raw units per UI token
SPL_ACCOUNT_SIZE = 165                # token account data size, for holder counts

# Struct offsets for on-chain data parsing (u64 little endian)
BONDING_CURVE_VIRT_TOKEN_OFFSET = 8
BONDING_CURVE_VIRT_SOL_OFFSET = 16
BONDING_CURVE_REAL_TOKEN_OFFSET = 24
BONDING_CURVE_REAL_SOL_OFFSET = 32
BONDING_CURVE_SUPPLY_OFFSET = 40
BONDING_CURVE_COMPLETE_OFFSET = 48
BONDING_CURVE_SEED = b"bonding-curve"

# ============================================
# SELL ENGINE LIMITS (fixed safety limits, not user tunable)
# ============================================
MAX_SELLING_STEP = 4
LOW_MC_THRESHOLD_USD = 7_000
LOW_MC_MAX_AGE_SEC = 48 * 60 * 60
MIN_REFERENCE_PRICE = 1e-9
STAGNATION_MS_CUTOFF = 1000           # durations above this are milliseconds

# ============================================
# MONITOR TIMING
# ============================================
SELL_COOLDOWN_SEC = 5.0
FAILED_SELL_COOLDOWN_SEC = 10.0
CLAIM_TIMEOUT_SEC = 15.0
MAX_CONCURRENT_SELLS = 3
EVENT_DEBOUNCE_SEC = 2.0
PENDING_EXPIRY_SEC = 5 * 60
FAILED_PENDING_EXPIRY_SEC = 10.0
WALLET_SYNC_INTERVAL_SEC = 60.0
STATUS_LOG_INTERVAL_SEC = 60.0

# ============================================
# SWAP EXECUTION
# ============================================
MAX_SWAP_RETRIES = 2
TX_CONFIRMATION_TIMEOUT = 30          # seconds to wait for TX confirmation
DUST_BURN_THRESHOLD = 0.0001          # UI tokens, burn instead of selling
FALLBACK_BURN_THRESHOLD = 0.001       # UI tokens, burn after all venues fail
SELL_ALL_TIP_SOL = 0.00001

# ============================================
# ACQUISITION
# ============================================
MIN_WALLET_BALANCE_SOL = 0.03
DUPLICATE_WINDOW_SEC = 5 * 24 * 60 * 60
DEFAULT_MAX_AGE_SEC = 30 * 60
DEFAULT_SOL_PRICE_USD = 160.0

# ============================================
# API ENDPOINTS
# ============================================
PUMPFUN_IMAGE_URL = "https://pump.fun/logo.png"
SOLSCAN_TX_URL = "https://solscan.io/tx/{signature}"


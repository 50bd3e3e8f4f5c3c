"""Trustless escrow configuration constants.

Window lengths match the deployed contract: a 7 day dispute window after
work is marked complete and a 30 day wait before an unfinished escrow can
be refunded.
"""

# Time (unix seconds)
MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

DISPUTE_WINDOW = 7 * DAY
AUTO_REFUND_WINDOW = 30 * DAY

# Units
ETHER_DECIMALS = 18
ETHER = 10**ETHER_DECIMALS

# Identities
ADDRESS_SIZE = 20
ZERO_ADDRESS = bytes(ADDRESS_SIZE)

# Limits
MAX_U64 = (1 << 64) - 1
MAX_REASON_LEN = 1024

# Persisted record layout
RECORD_VERSION = 1

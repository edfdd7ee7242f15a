from prometheus_client import Counter

tokens_granted_total = Counter(
    "billing_tokens_granted_total", "Number of successful token credit operations", ["type", "wallet_type"]
)
tokens_deducted_total = Counter(
    "billing_tokens_deducted_total", "Number of successful token debit operations", ["type", "wallet_type"]
)
insufficient_balance_total = Counter(
    "billing_insufficient_balance_total", "Number of debit attempts rejected for insufficient tokens", ["type"]
)
storage_conflict_total = Counter(
    "billing_storage_conflict_total", "Number of transient storage conflicts on the atomic adjust", ["operation"]
)
daily_reset_total = Counter(
    "billing_daily_reset_total", "Number of STANDARD wallets reset to the daily allotment", ["trigger"]
)
daily_reset_failures_total = Counter(
    "billing_daily_reset_failures_total", "Number of per-user failures during a bulk daily reset"
)

from .wallet import DEBIT_PRIORITY, Wallet, WalletType
from .ledger_entry import LedgerEntry, TransactionType

__all__ = [
    "DEBIT_PRIORITY",
    "Wallet",
    "WalletType",
    "LedgerEntry",
    "TransactionType",
]

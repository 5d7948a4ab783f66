"""
Ledger - evidence record integrity and lifecycle engine
Verified sources, signed manifests and versioned evidence cards
"""

__version__ = "0.1.0"
__author__ = "Ledger Team"

from ledger.config import LedgerConfig, get_config
from ledger.engine import LedgerEngine
from ledger.sources import SourceVerifier
from ledger.cards import CardLifecycle
from ledger.gate import PublicationGate

__all__ = [
    "LedgerConfig",
    "get_config",
    "LedgerEngine",
    "SourceVerifier",
    "CardLifecycle",
    "PublicationGate",
]

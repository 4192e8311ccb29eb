"""
UPI Bridge package.

Watches a stablecoin contract for deposits and pays out the matching
UPI payment intent once a deposit is confirmed on-chain.
"""

from .bridge import PaymentBridge
from .config import BridgeConfig
from .models import DepositRequest, RequestState, TransferEvent
from .orchestrator import PaymentOrchestrator

__all__ = [
    "BridgeConfig",
    "PaymentBridge",
    "PaymentOrchestrator",
    "DepositRequest",
    "RequestState",
    "TransferEvent",
]
__version__ = "0.1.0"

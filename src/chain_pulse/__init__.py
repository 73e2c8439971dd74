"""
Chain pulse package.

Live transaction stream and transactions-per-minute analytics for an EVM chain.
"""

from .config import ServiceConfig
from .models import TPMSample, TPMStatistics, TransactionRecord
from .service import ChainPulseService

__all__ = ["ServiceConfig", "ChainPulseService", "TransactionRecord", "TPMSample", "TPMStatistics"]
__version__ = "0.1.0"

"""
Ledger Transfers Service

Account creation, balance lookup and atomic point-to-point transfers backed
by a transactional store. All monetary values use Decimal precision.
"""

__version__ = "1.0.0"

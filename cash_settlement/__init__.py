"""
Cash Settlement.

Cash-drawer settlement for bill-payment counters: change-making,
service commissions, credit limits and settlement-feed reconciliation.
"""

__version__ = "0.1.0"

"""
Core modules for Cash Settlement.

This package contains the settlement engines: denominations and
change-making, commissions, credit limits, reference rules and
reconciliation, plus the orchestrator that ties them together.
"""

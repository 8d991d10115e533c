"""
Core modules for Entitlement Guard.

This package contains the plan catalog, usage ledger, entitlement
evaluator, connection registry, content dispatch adapter and feature gate.
"""

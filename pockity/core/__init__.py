"""
Core modules for Pockity.

This package contains tenant resolution, quota policy, the usage ledger,
the approval workflow and the storage operations built on them.
"""

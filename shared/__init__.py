"""
Shared

Configuration, logging, storage and upload primitives used by the audit and
reconciliation pipelines.
"""

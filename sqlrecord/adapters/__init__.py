"""Driver adapters.

Each adapter lives in its own subpackage so its client library is imported
only when the adapter is used.
"""

"""
Shared helpers: URL normalization, feature labels, cancellation.
"""

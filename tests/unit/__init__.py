"""
Unit Tests Package.

Isolated tests of individual components: rate windows, retry policy,
normalization, validation and text formatting.
"""

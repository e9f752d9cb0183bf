"""
Integration Tests Package.

Tests at the platform SDK boundary: tweepy is mocked at the client level,
but responses and exceptions are the real requests/tweepy types.
"""

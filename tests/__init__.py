"""
Test Suite for the mention bot.

Structure:
    tests/
    ├── conftest.py          # Shared fixtures, payload builders, fake sleep/clock
    ├── unit/                # Pure logic, no I/O
    │   ├── test_rate_limiter.py
    │   ├── test_retry.py
    │   ├── test_models.py
    │   ├── test_mention_fetcher.py
    │   ├── test_moderation.py
    │   ├── test_chaos.py
    │   ├── test_formatter.py
    │   └── test_cli.py
    ├── integration/         # tweepy boundary with real requests.Response objects
    │   └── test_twitter_client.py
    └── real/                # Real components wired together
        ├── test_rate_limiter_real.py
        ├── test_poster_real.py
        ├── test_pipeline_real.py
        ├── test_engines_real.py
        ├── test_enrichment_real.py
        ├── test_storage_real.py
        └── test_bot_cycle_real.py

Run tests:
    pytest tests/                    # All tests
    pytest tests/unit/               # Unit tests only
    pytest tests/real/               # Real functionality tests only
    pytest tests/ -m integration     # Tests marked @pytest.mark.integration
    pytest tests/ --cov=mentionbot   # With coverage
"""

"""
Common building blocks shared by the tab categorizer.

This package contains reusable, domain-agnostic code:

- configuration loading (environment variables)
- retry/backoff helpers and a millisecond clock
- logging configuration
- the OpenAI-compatible chat completion mixin
- a small persistent key/value store
"""

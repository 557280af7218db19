"""Request-facing services: pricing, submission, rate limiting."""

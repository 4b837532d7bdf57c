"""
Rate limiting package for the dashboard.

Holds the gate that tracks, per Discord route, whether outbound calls are
currently forbidden after the upstream reported a rate limit.
"""

from .gate import RateLimitGate, RateLimitStatus, endpoint_for

__all__ = ["RateLimitGate", "RateLimitStatus", "endpoint_for"]

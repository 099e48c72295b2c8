"""
Resilience patterns: Circuit Breaker and Retry Logic

Provides resilience utilities for calls leaving the process:
- Circuit breakers: Prevent cascading failures by failing fast when a backend is down
- Retry decorators: Automatic retry with exponential backoff for transient failures

Usage:
    @retry_redis_operation()
    @redis_breaker
    def publish(...):
        ...

Circuit Breaker States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend is failing, requests fail immediately
- HALF-OPEN: Testing if backend recovered
"""

import logging
from typing import Dict

import structlog
from pybreaker import CircuitBreaker
from redis.exceptions import RedisError
from sqlalchemy.exc import DatabaseError, OperationalError
from tenacity import after_log, before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)


# Database Circuit Breaker
db_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    name="database_circuit_breaker",
)

# Redis Circuit Breaker
redis_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    name="redis_circuit_breaker",
)


def retry_database_operation():
    """
    Retry decorator for database operations
    Retries up to 3 times with exponential backoff
    """
    return retry(
        retry=retry_if_exception_type((OperationalError, DatabaseError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )


def retry_redis_operation():
    """
    Retry decorator for Redis operations
    Retries up to 3 times with exponential backoff
    """
    return retry(
        retry=retry_if_exception_type(RedisError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )


def get_circuit_breaker_status() -> Dict[str, dict]:
    """
    Get status of all circuit breakers for health monitoring.

    Returns:
        Dict with breaker name -> status info
    """
    breakers = {
        "database": db_breaker,
        "redis": redis_breaker,
    }

    return {
        name: {
            "state": str(breaker.current_state),
            "fail_count": breaker.fail_counter,
            "fail_max": breaker.fail_max,
        }
        for name, breaker in breakers.items()
    }

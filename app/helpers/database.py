"""Database related helper functions."""

import logging

import redis
from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.database import db


def check_database() -> tuple[bool, str]:
    """Check if the database is up and running.

    Returns
    -------
    tuple
        A tuple with a boolean indicating success and a string with the message.
    """
    try:
        db.session.execute(text("SELECT 1"))
        return True, "Database is up and running."
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.exception("Database check failed")
        return False, str(e)


def check_redis() -> tuple[bool, str]:
    """Check if the Redis server is up and running."""
    redis_url = current_app.config.get("REDIS_URL")
    if not redis_url:
        return True, "Redis is not configured."
    try:
        logging.debug(f"Connecting to Redis: {redis_url}")
        r = redis.Redis.from_url(redis_url)
        r.ping()
        return True, "Redis is reachable."
    except redis.RedisError as e:
        logging.exception("Redis check failed")
        return False, str(e)


def perform_health_checks() -> list[str]:
    """Perform health checks on the application.

    Returns
    -------
    list
        A list of errors, if any.
    """
    checks = [check_database, check_redis]
    errors = []
    for check in checks:
        logging.debug(f"Running check: {check.__name__}")
        success, message = check()
        if not success:
            logging.error(f"Health check failed ({check.__name__}): {message}")
            errors.append(message)
        else:
            logging.debug(f"Health check passed ({check.__name__}): {message}")
    return errors

# config/validation.py

"""
Environment variable validation for the customer hub.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

_PLACEHOLDER_SECRETS = {"your-secret-key", "your_secret_key", "changeme"}
_SUPPORTED_DATABASE_SCHEMES = ("postgres://", "postgresql://", "postgresql+psycopg2://", "sqlite://")


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in _PLACEHOLDER_SECRETS:
        errors.append(
            "SECRET_KEY is required in production and must not be a placeholder value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )
    elif not database_url.startswith(_SUPPORTED_DATABASE_SCHEMES):
        errors.append(f"DATABASE_URL uses an unsupported scheme: {database_url.split(':', 1)[0]}")

    for name in ("SEARCH_CANDIDATE_LIMIT", "SEARCH_DEFAULT_LIMIT", "SEARCH_MAX_LIMIT", "SYNC_BATCH_SIZE"):
        raw = os.environ.get(name)
        if raw is not None and not raw.strip().isdigit():
            errors.append(f"{name} must be a positive integer, got '{raw}'")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)

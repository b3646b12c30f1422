# config/validation.py

"""
Environment variable validation for the artwork importer.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def _is_number_between(raw: str, low: float, high: float) -> bool:
    try:
        value = float(raw)
    except ValueError:
        return False
    return low <= value <= high


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

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )

    threshold = os.environ.get("IMPORTER_MERGE_CONFIDENCE_THRESHOLD")
    if threshold is not None and not _is_number_between(threshold, 0.0, 1.0):
        errors.append("IMPORTER_MERGE_CONFIDENCE_THRESHOLD must be a number between 0 and 1")

    similarity = os.environ.get("IMPORTER_ARTIST_SIMILARITY_THRESHOLD")
    if similarity is not None and not _is_number_between(similarity, 0.0, 1.0):
        errors.append("IMPORTER_ARTIST_SIMILARITY_THRESHOLD must be a number between 0 and 1")

    max_workers = os.environ.get("IMPORTER_MAX_WORKERS")
    if max_workers is not None and not (max_workers.isdigit() and 1 <= int(max_workers) <= 8):
        errors.append("IMPORTER_MAX_WORKERS must be an integer between 1 and 8")

    profile_path = os.environ.get("IMPORTER_SURVIVORSHIP_PROFILE_PATH")
    if profile_path and not os.path.exists(profile_path):
        errors.append(f"IMPORTER_SURVIVORSHIP_PROFILE_PATH points to a missing file: {profile_path}")

    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true")

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

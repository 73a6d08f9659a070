"""
Input validation utilities for the row store and CLI.

Collection names end up as SQL identifiers and row ids as primary keys, so
both are checked before they reach the database.
"""

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


_RESERVED_KEYWORDS = {
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "table", "database", "index", "view", "user", "grant", "revoke",
}


def validate_record_id(record_id: str, field_name: str = "record_id") -> str:
    """
    Validate a row id.

    Row ids must be non-empty strings of alphanumerics, hyphens, underscores,
    dots and colons, at most 255 characters.

    Returns:
        The validated id (stripped of whitespace)

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_record_id("BTX-000123")
        'BTX-000123'
        >>> validate_record_id("EXC-BTX-1:NO_RULE_MATCH")
        'EXC-BTX-1:NO_RULE_MATCH'
    """
    if not record_id or not isinstance(record_id, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    record_id = record_id.strip()
    if not record_id:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not re.match(r'^[a-zA-Z0-9_\-\.:]+$', record_id):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and colons are allowed."
        )

    if len(record_id) > 255:
        raise ValidationError(f"{field_name} exceeds maximum length of 255 characters")

    return record_id


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Sanitize an SQL identifier (collection/table name).

    Returns:
        The validated identifier

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> sanitize_sql_identifier("trx_enrichment")
        'trx_enrichment'
        >>> sanitize_sql_identifier("table; DROP TABLE users;")  # doctest: +SKIP
        ValidationError: identifier contains invalid characters
    """
    if not identifier or not isinstance(identifier, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    identifier = identifier.strip()

    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', identifier):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "SQL identifiers must start with a letter or underscore and contain only "
            "alphanumeric characters and underscores."
        )

    if len(identifier) > 63:  # PostgreSQL limit
        raise ValidationError(f"{field_name} exceeds PostgreSQL maximum length of 63 characters")

    if identifier.lower() in _RESERVED_KEYWORDS:
        raise ValidationError(
            f"{field_name} '{identifier}' is a reserved SQL keyword. "
            "Please use a different name."
        )

    return identifier


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit parameter for queries.

    Raises:
        ValidationError: If limit is not a positive integer up to max_limit
    """
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a rule file path given on the command line.

    Raises:
        ValidationError: On empty paths, path traversal or null bytes
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()
    if not file_path:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise ValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains null bytes")

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise ValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path

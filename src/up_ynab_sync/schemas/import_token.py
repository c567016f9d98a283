"""
Import token resolution.

YNAB deduplicates imports on `import_id`, which is limited to 36 characters.
Up transaction ids are UUIDs, so the id is used unchanged. Longer ids are
truncated to their first 36 characters; two long ids sharing that prefix
would collide, which is logged whenever truncation happens.
"""

import logging

logger = logging.getLogger(__name__)

IMPORT_TOKEN_MAX_LENGTH = 36


def resolve_import_token(source_id: str) -> str:
    """
    Derive the import token for a source transaction id.

    Deterministic: the same id always yields the same token.

    Raises:
        ValueError: If the id is empty
    """
    if not source_id or not source_id.strip():
        raise ValueError("Source transaction id is empty")

    if len(source_id) <= IMPORT_TOKEN_MAX_LENGTH:
        return source_id

    token = source_id[:IMPORT_TOKEN_MAX_LENGTH]
    logger.warning(
        "Transaction id %s exceeds %d characters, truncated import token to %s",
        source_id,
        IMPORT_TOKEN_MAX_LENGTH,
        token,
    )
    return token

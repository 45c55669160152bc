"""Claim code generation utilities."""
import re
import secrets
from typing import Iterable, Optional

from app.exceptions import CodeGenerationError

# No I, O, 0 or 1 so codes survive being read aloud or hand-typed
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 12
MAX_ATTEMPTS = 10

CODE_PATTERN = re.compile(r"^[A-Z0-9]{12}$")


def generate_claim_code(length: int = CODE_LENGTH) -> str:
    """
    Generate a random claim code.

    Args:
        length: Number of characters

    Returns:
        Upper-case alphanumeric code

    Examples:
        >>> len(generate_claim_code())
        12
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str) -> str:
    """
    Normalize user-entered code text.

    Args:
        raw: Code as typed by the user

    Returns:
        Trimmed, upper-cased code

    Raises:
        ValueError: If the result is not a 12-character alphanumeric code
    """
    code = (raw or "").strip().upper()
    if not CODE_PATTERN.match(code):
        raise ValueError("Code must be 12 letters or digits")
    return code


async def _code_taken(checks: Iterable[tuple], code: str, session=None) -> bool:
    for collection, field in checks:
        existing = await collection.find_one({field: code}, session=session)
        if existing:
            return True
    return False


async def generate_unique_claim_code(
    checks: list[tuple],
    max_attempts: int = MAX_ATTEMPTS,
    reserved: Optional[set[str]] = None,
    length: int = CODE_LENGTH,
    session=None,
) -> str:
    """
    Generate a claim code not present in any of the checked fields.

    Args:
        checks: (collection, field) pairs the code must not appear in
        max_attempts: Attempt limit before giving up
        reserved: Codes already handed out in the current batch
        length: Code length
        session: Optional client session for transactional reads

    Returns:
        Unique claim code

    Raises:
        CodeGenerationError: If every attempt collided
    """
    reserved = reserved if reserved is not None else set()

    for _ in range(max_attempts):
        candidate = generate_claim_code(length)
        if candidate in reserved:
            continue
        if await _code_taken(checks, candidate, session=session):
            continue
        reserved.add(candidate)
        return candidate

    raise CodeGenerationError(
        f"Failed to generate a unique claim code after {max_attempts} attempts"
    )


async def generate_code_pair(
    checks: list[tuple],
    max_attempts: int = MAX_ATTEMPTS,
    length: int = CODE_LENGTH,
    session=None,
) -> tuple[str, str]:
    """
    Generate two distinct unique codes for a paired challenge.

    The purchaser code is generated first. The partner code is then
    regenerated while it equals the purchaser code.

    Args:
        checks: (collection, field) pairs neither code may appear in
        max_attempts: Attempt limit for each code and for the pair
        length: Code length
        session: Optional client session for transactional reads

    Returns:
        Tuple of (purchaser_code, partner_code)

    Raises:
        CodeGenerationError: If unique or distinct codes could not be produced
    """
    purchaser_code = await generate_unique_claim_code(
        checks, max_attempts=max_attempts, length=length, session=session
    )

    for _ in range(max_attempts):
        partner_code = await generate_unique_claim_code(
            checks, max_attempts=max_attempts, length=length, session=session
        )
        if partner_code != purchaser_code:
            return purchaser_code, partner_code

    raise CodeGenerationError(
        f"Failed to generate distinct partner codes after {max_attempts} attempts"
    )

import secrets
import uuid


def generate_numeric_code(length: int = 6) -> str:
    """Random zero-padded numeric code for pickup and dropoff handovers."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def generate_reference(prefix: str) -> str:
    """Generate a unique human-facing reference such as ORD-1A2B3C4D5E6F."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

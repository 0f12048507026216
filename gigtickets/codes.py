"""
Ticket code generator.

Codes are 12 upper-case hex characters from the OS CSPRNG: short enough to
read out at the door, URL-safe for the QR payload, and with 2**48 possible
values there is no useful way to guess one. Uniqueness is the ledger's job;
the fulfillment loop regenerates whatever the ledger rejects.
"""
import secrets

CODE_BYTES = 6
CODE_LENGTH = CODE_BYTES * 2
MAX_ATTEMPTS = 5


def generate_code() -> str:
    return secrets.token_hex(CODE_BYTES).upper()

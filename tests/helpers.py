from __future__ import annotations


def addr(n: int) -> str:
    """Canonical 20-byte address for a small integer."""
    return "0x%040x" % n


PARTNER = addr(0x123)
USER = addr(0x456)
STRANGER = addr(0x789)


def caller(address: str) -> dict:
    return {"X-UCDP-CALLER": address}

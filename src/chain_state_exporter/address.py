from __future__ import annotations

from substrateinterface.utils.ss58 import ss58_decode, ss58_encode

DARWINIA_SS58_FORMAT = 18


def _is_hex(value: str) -> bool:
    body = value[2:] if value.startswith("0x") else value
    if not body or len(body) % 2:
        return False
    try:
        bytes.fromhex(body)
    except ValueError:
        return False
    return True


class AddressEncoder:
    """Maps account identities, as the storage decoder yields them, to labels.

    The decoder hands out either a hex public key or an SS58 address depending
    on how the runtime was configured; both forms are accepted.
    """

    def __init__(self, ss58_format: int = DARWINIA_SS58_FORMAT):
        self.ss58_format = ss58_format

    def account_id(self, identity: str) -> str:
        """Hex public key of ``identity``, without the 0x prefix."""
        if _is_hex(identity):
            return identity[2:] if identity.startswith("0x") else identity
        return ss58_decode(identity)

    def encode(self, identity: str) -> str:
        return ss58_encode("0x" + self.account_id(identity), ss58_format=self.ss58_format)

"""Source-ledger address checks."""

from earn.utils.constants import MIN_ADDRESS_LENGTH, ZCASH_ADDRESS_PREFIXES


def is_valid_source_address(address: str | None) -> bool:
    """Cheap format check for Zcash transparent, sapling and unified addresses."""
    if not address or not isinstance(address, str):
        return False
    address = address.strip()
    if len(address) < MIN_ADDRESS_LENGTH:
        return False
    return address.startswith(ZCASH_ADDRESS_PREFIXES)

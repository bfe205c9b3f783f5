# amm_indexer/utils/sanitize.py
import re
from web3 import Web3
from web3.datastructures import AttributeDict
from hexbytes import HexBytes

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def to_hex_str(value) -> str:
    """Lower-case, 0x-prefixed hex for bytes or hex-ish strings."""
    if isinstance(value, (bytes, bytearray, HexBytes)):
        return Web3.to_hex(value).lower()
    value = str(value).lower()
    return value if value.startswith("0x") else "0x" + value


def sanitize_log(log):
    """Convert Web3 log to JSON-safe dict."""
    out = {}
    for k, v in dict(log).items():
        if isinstance(v, (bytes, bytearray, HexBytes)):
            out[k] = to_hex_str(v)
        elif isinstance(v, AttributeDict):
            out[k] = dict(v)
        elif k == "topics":
            out[k] = [to_hex_str(t) for t in v]
        elif k == "address" and isinstance(v, str):
            out[k] = v.lower()
        else:
            out[k] = v
    return out


def is_address(value: str | None) -> bool:
    return bool(value) and ADDRESS_RE.match(value) is not None


def as_int(value) -> int:
    """int from an int, a decimal string or a 0x-hex string."""
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)

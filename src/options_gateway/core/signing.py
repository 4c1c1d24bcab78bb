"""
EIP-712 quote signing.

Quotes are signed as ``FillQuoteOB`` typed data under the domain
``{name: "Premia", version: "1", chainId, verifyingContract: poolAddress}``.
Hashing here is bit-exact with what the pool contracts verify, so the field
order of the type definitions below must never change.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from eth_abi import encode
from eth_keys import keys
from eth_utils import keccak, to_bytes, to_canonical_address, to_checksum_address

from ..interfaces import ITypedDataSigner
from ..types import QuoteOB, Signature, ZERO_ADDRESS

logger = logging.getLogger(__name__)

DOMAIN_NAME = "Premia"
DOMAIN_VERSION = "1"
PRIMARY_TYPE = "FillQuoteOB"

EIP712_DOMAIN_FIELDS: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

FILL_QUOTE_OB_FIELDS: List[Dict[str, str]] = [
    {"name": "provider", "type": "address"},
    {"name": "taker", "type": "address"},
    {"name": "price", "type": "uint256"},
    {"name": "size", "type": "uint256"},
    {"name": "isBuy", "type": "bool"},
    {"name": "deadline", "type": "uint256"},
    {"name": "salt", "type": "uint256"},
]

SIGNATURE_LENGTH = 65


@dataclass
class TypedMessage:
    """EIP-712 typed data of one quote"""
    domain: Dict[str, Any]
    message: Dict[str, Any]
    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {PRIMARY_TYPE: list(FILL_QUOTE_OB_FIELDS)}
    )
    primary_type: str = PRIMARY_TYPE

    def to_dict(self) -> Dict[str, Any]:
        """Full typed-data document including the domain type"""
        return {
            "types": {"EIP712Domain": list(EIP712_DOMAIN_FIELDS), **self.types},
            "primaryType": self.primary_type,
            "domain": dict(self.domain),
            "message": dict(self.message),
        }


def type_string(type_name: str, fields: List[Dict[str, str]]) -> str:
    members = ",".join(f"{member['type']} {member['name']}" for member in fields)
    return f"{type_name}({members})"


def type_hash(type_name: str, fields: List[Dict[str, str]]) -> bytes:
    return keccak(text=type_string(type_name, fields))


def typed_values(fields: List[Dict[str, str]], values: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce decimal-string numeric fields to ints for encoders that need them"""
    coerced = {}
    for member in fields:
        value = values[member["name"]]
        if member["type"].startswith("uint"):
            value = int(value)
        coerced[member["name"]] = value
    return coerced


def hash_struct(type_name: str, fields: List[Dict[str, str]], values: Dict[str, Any]) -> bytes:
    abi_types = ["bytes32"]
    encoded = [type_hash(type_name, fields)]

    for member in fields:
        value = values[member["name"]]
        kind = member["type"]
        if kind == "string":
            abi_types.append("bytes32")
            encoded.append(keccak(text=value))
        elif kind == "address":
            abi_types.append("address")
            encoded.append(to_canonical_address(value))
        elif kind.startswith("uint"):
            abi_types.append(kind)
            encoded.append(int(value))
        elif kind == "bool":
            abi_types.append("bool")
            encoded.append(bool(value))
        else:
            raise ValueError(f"Unsupported EIP-712 member type: {kind}")

    return keccak(encode(abi_types, encoded))


def compute_domain_separator(domain: Dict[str, Any]) -> bytes:
    return hash_struct("EIP712Domain", EIP712_DOMAIN_FIELDS, domain)


def compute_struct_hash(message: Dict[str, Any]) -> bytes:
    return hash_struct(PRIMARY_TYPE, FILL_QUOTE_OB_FIELDS, message)


def compute_digest(typed_message: TypedMessage) -> bytes:
    """keccak256("\\x19\\x01" || domainSeparator || structHash)"""
    return keccak(
        b"\x19\x01"
        + compute_domain_separator(typed_message.domain)
        + compute_struct_hash(typed_message.message)
    )


def split_signature(raw: Union[bytes, str]) -> Signature:
    """Split a 65 byte signature into r (0-32), s (32-64) and v (64)"""
    signature = to_bytes(hexstr=raw) if isinstance(raw, str) else bytes(raw)
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError(f"Expected a {SIGNATURE_LENGTH} byte signature, got {len(signature)} bytes")

    return Signature(
        r="0x" + signature[0:32].hex(),
        s="0x" + signature[32:64].hex(),
        v=signature[64],
    )


def recover_signer(typed_message: TypedMessage, signature: Signature) -> str:
    """Checksum address of the key that produced the signature"""
    v = signature.v - 27 if signature.v >= 27 else signature.v
    vrs = (v, int(signature.r, 16), int(signature.s, 16))
    public_key = keys.Signature(vrs=vrs).recover_public_key_from_msg_hash(compute_digest(typed_message))
    return public_key.to_checksum_address()


def verify_signature(typed_message: TypedMessage, signature: Signature, expected_signer: str) -> bool:
    try:
        recovered = recover_signer(typed_message, signature)
    except Exception as e:
        logger.debug(f"Signature recovery failed: {e}")
        return False
    return recovered == to_checksum_address(expected_signer)


class SaltGenerator:
    """Issuance-time salts, strictly increasing within the process"""

    def __init__(self, clock=time.time_ns):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            salt = max(self._clock() // 1_000, self._last + 1)
            self._last = salt
            return salt


class QuoteSigner:
    """Builds and signs quote typed data for one chain"""

    def __init__(self, signer: ITypedDataSigner, chain_id: int, salts: Optional[SaltGenerator] = None):
        self.signer = signer
        self.chain_id = chain_id
        self.salts = salts or SaltGenerator()

    @property
    def address(self) -> str:
        return self.signer.address

    def build_quote(self,
                    size: int,
                    is_buy: bool,
                    price: int,
                    deadline: int,
                    taker: Optional[str] = None) -> QuoteOB:
        """Quote terms issued by this gateway's wallet; deadline is absolute"""
        return QuoteOB(
            provider=self.signer.address,
            taker=taker or ZERO_ADDRESS,
            price=price,
            size=size,
            is_buy=is_buy,
            deadline=deadline,
            salt=self.salts.next(),
        )

    def build_message(self, pool_address: str, quote: QuoteOB) -> TypedMessage:
        domain = {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": pool_address,
        }
        return TypedMessage(domain=domain, message=quote.to_message())

    def sign(self, typed_message: TypedMessage) -> Signature:
        raw = self.signer.sign_typed_data(
            typed_message.domain,
            typed_message.types,
            typed_message.message,
        )
        return split_signature(raw)

    def sign_quote(self, pool_address: str, quote: QuoteOB) -> Signature:
        return self.sign(self.build_message(pool_address, quote))

# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

# The API encoding renders binary values as `prefix_` followed by the value
# and a 4 byte checksum (the first bytes of a double SHA-256 of the value)
# in either base58 or base64. The prefix names what the value is and also
# determines which of the two encodings is used.

import base64
import hashlib
from typing import Self

import base58

from .datamodel import Enum, FixedSize, Hash

__all__ = 'IdentifierType', 'Identifier', 'encode_api', 'hash_transaction', 'transaction_hash'  # noqa: RUF022


BASE64_PREFIXES = frozenset({'ba', 'cb', 'ck', 'cs', 'cv', 'or', 'ov', 'pi', 'ss', 'tx'})


def _checksum(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[:4]


def encode_api(prefix: str, data: bytes) -> str:
    if prefix in BASE64_PREFIXES:
        encoded = base64.b64encode(data + _checksum(data)).decode()
    else:
        encoded = base58.b58encode_check(data).decode()
    return f'{prefix}_{encoded}'


def hash_transaction(data: bytes) -> Hash:
    return Hash(hashlib.blake2b(data, digest_size=Hash._size_).digest())


def transaction_hash(data: bytes) -> str:
    """Return the API encoded hash of a serialized signed transaction"""
    return encode_api('th', hash_transaction(data))


class IdentifierType(Enum):
    account = 1
    name = 2
    commitment = 3
    oracle = 4
    contract = 5
    channel = 6

    @property
    def prefix(self) -> str:
        return _identifier_prefixes[self]


_identifier_prefixes = {
    IdentifierType.account: 'ak',
    IdentifierType.name: 'nm',
    IdentifierType.commitment: 'cm',
    IdentifierType.oracle: 'ok',
    IdentifierType.contract: 'ct',
    IdentifierType.channel: 'ch',
}


class Identifier(FixedSize, size=33):
    """A reference to an account, name, commitment, oracle, contract or channel"""

    def __new__(cls, *args, **kw) -> Self:
        instance = super().__new__(cls, *args, **kw)
        if instance[0] not in IdentifierType:
            raise ValueError(f'Unknown identifier type: {instance[0]}')
        return instance

    def __repr__(self) -> str:
        return f'<{self.__class__.__qualname__}: {self}>'

    def __str__(self) -> str:
        return encode_api(self.type.prefix, self.value)

    @property
    def type(self) -> IdentifierType:
        return IdentifierType(self[0])

    @property
    def value(self) -> Hash:
        return Hash(self[1:])

    @classmethod
    def new(cls, identifier_type: IdentifierType, value: bytes) -> Self:
        return cls(identifier_type.to_wire() + value)

    @classmethod
    def is_identifier(cls, data: bytes) -> bool:
        return len(data) == cls._size_ and data[0] in IdentifierType

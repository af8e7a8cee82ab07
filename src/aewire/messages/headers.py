# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Block headers.

Key header (364 bytes):

    uint32          version
    uint32          flags (key marker in the top bit, the rest unused)
    uint64          height
    opaque          prev_hash[32]
    opaque          prev_key_hash[32]
    opaque          state_hash[32]
    opaque          miner[32]
    opaque          beneficiary[32]
    uint32          target
    uint32          pow[42]
    uint64          nonce
    uint64          time

Micro header (216 or 248 bytes):

    uint32          version
    uint8           flags (micro marker in bit 7, fraud flag in bit 6)
    opaque          reserved[3]
    uint64          height
    opaque          prev_hash[32]
    opaque          prev_key_hash[32]
    opaque          state_hash[32]
    opaque          txs_hash[32]
    uint64          time
    opaque          fraud_hash[32] (only present if the fraud flag is set)
    opaque          signature[64]

The fields of both headers are read in order. For the micro header the flags
byte is looked up first and MicroHeaderLayout gives the size the record must
have, which is checked before any field is read. Its fraud_hash_offset and
signature_offset are where the ordered reads of those two fields end up.
"""

from dataclasses import dataclass
from io import BytesIO
from typing import ClassVar, Self

from .datamodel import Hash, KeyHeaderFlags, MicroHeaderFlags, ProofOfWork, Reserved, Signature, UInt32Adapter, UInt64Adapter, WireData
from .elements import AnnotatedStructure, ConditionalElement, Element
from .exceptions import TruncatedRecordError
from .identifiers import encode_api

__all__ = 'KeyHeader', 'MicroHeader', 'MicroHeaderLayout', 'decode_key_header', 'decode_micro_header'  # noqa: RUF022


class KeyHeader(AnnotatedStructure):
    _size_: ClassVar[int] = 364

    version: Element[int] = Element(int, adapter=UInt32Adapter)
    flags: Element[KeyHeaderFlags] = Element(KeyHeaderFlags, default=KeyHeaderFlags.key)
    height: Element[int] = Element(int, adapter=UInt64Adapter)
    prev_hash: Element[Hash] = Element(Hash)
    prev_key_hash: Element[Hash] = Element(Hash)
    state_hash: Element[Hash] = Element(Hash)
    miner: Element[Hash] = Element(Hash)
    beneficiary: Element[Hash] = Element(Hash)
    target: Element[int] = Element(int, adapter=UInt32Adapter)
    pow: Element[ProofOfWork] = Element(ProofOfWork)
    nonce: Element[int] = Element(int, adapter=UInt64Adapter)
    time: Element[int] = Element(int, adapter=UInt64Adapter)

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        data = buffer.read() if isinstance(buffer, BytesIO) else bytes(buffer)
        if len(data) < cls._size_:
            raise TruncatedRecordError(f'Insufficient data in buffer to extract {cls.__qualname__!r} ({len(data)} < {cls._size_} bytes)')
        return super().from_wire(data[:cls._size_])

    def to_display(self) -> dict[str, object]:
        return {
            'version': self.version,
            'flags': int(self.flags),
            'height': self.height,
            'prev_hash': _encode_previous_hash(self.prev_hash, self.prev_key_hash),
            'prev_key_hash': encode_api('kh', self.prev_key_hash),
            'state_hash': encode_api('bs', self.state_hash),
            'miner': encode_api('ak', self.miner),
            'beneficiary': encode_api('ak', self.beneficiary),
            'target': self.target,
            'pow': list(self.pow.nonces),
            'nonce': self.nonce,
            'time': self.time,
        }


@dataclass(frozen=True, slots=True)
class MicroHeaderLayout:
    """The position of the flag dependent trailing fields of a micro header"""

    has_fraud: bool

    flags_offset: ClassVar[int] = 4
    fixed_size: ClassVar[int] = 152

    @classmethod
    def for_flags(cls, flags: int) -> Self:
        return cls(has_fraud=bool(flags & MicroHeaderFlags.has_fraud))

    @property
    def fraud_hash_offset(self) -> int | None:
        return self.fixed_size if self.has_fraud else None

    @property
    def signature_offset(self) -> int:
        return self.fixed_size + Hash._size_ if self.has_fraud else self.fixed_size

    @property
    def size(self) -> int:
        return self.signature_offset + Signature._size_


def _has_fraud(flags: MicroHeaderFlags) -> bool:
    return MicroHeaderFlags.has_fraud in flags


class MicroHeader(AnnotatedStructure):
    version: Element[int] = Element(int, adapter=UInt32Adapter)
    flags: Element[MicroHeaderFlags] = Element(MicroHeaderFlags, default=MicroHeaderFlags.micro)
    reserved: Element[Reserved] = Element(Reserved, default=Reserved(3))
    height: Element[int] = Element(int, adapter=UInt64Adapter)
    prev_hash: Element[Hash] = Element(Hash)
    prev_key_hash: Element[Hash] = Element(Hash)
    state_hash: Element[Hash] = Element(Hash)
    txs_hash: Element[Hash] = Element(Hash)
    time: Element[int] = Element(int, adapter=UInt64Adapter)
    fraud_hash: ConditionalElement[Hash, MicroHeaderFlags] = ConditionalElement(Hash, control_field=flags, condition=_has_fraud)
    signature: Element[Signature] = Element(Signature)

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        data = buffer.read() if isinstance(buffer, BytesIO) else bytes(buffer)
        if len(data) <= MicroHeaderLayout.flags_offset:
            raise TruncatedRecordError(f'Insufficient data in buffer to extract the {cls.__qualname__!r} flags')
        layout = MicroHeaderLayout.for_flags(data[MicroHeaderLayout.flags_offset])
        if len(data) < layout.size:
            raise TruncatedRecordError(f'Insufficient data in buffer to extract {cls.__qualname__!r} ({len(data)} < {layout.size} bytes)')
        return super().from_wire(data[:layout.size])

    @property
    def has_fraud(self) -> bool:
        return _has_fraud(self.flags)

    @property
    def layout(self) -> MicroHeaderLayout:
        return MicroHeaderLayout(has_fraud=self.has_fraud)

    def to_display(self) -> dict[str, object]:
        return {
            'version': self.version,
            'flags': int(self.flags),
            'height': self.height,
            'prev_hash': _encode_previous_hash(self.prev_hash, self.prev_key_hash),
            'prev_key_hash': encode_api('kh', self.prev_key_hash),
            'state_hash': encode_api('bs', self.state_hash),
            'txs_hash': encode_api('bx', self.txs_hash),
            'time': self.time,
            'fraud_hash': None if self.fraud_hash is None else encode_api('bf', self.fraud_hash),
            'signature': encode_api('sg', self.signature),
        }


def _encode_previous_hash(prev_hash: Hash, prev_key_hash: Hash) -> str:
    # The previous block is a key block when both hashes are the same
    return encode_api('kh' if prev_hash == prev_key_hash else 'mh', prev_hash)


def decode_key_header(data: WireData) -> KeyHeader:
    return KeyHeader.from_wire(data)


def decode_micro_header(data: WireData) -> MicroHeader:
    return MicroHeader.from_wire(data)

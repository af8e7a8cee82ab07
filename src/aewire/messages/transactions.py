# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

# A signed transaction is an RLP list [tag, version, signatures, transaction]
# where transaction is the serialized RLP list of the inner transaction. The
# inner transaction starts with its own tag and version, followed by the type
# specific fields. The layouts of the known transaction types are registered
# here and are used to render a decoded transaction as a record with named,
# API encoded fields.

import logging
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar, Final, Self

from .datamodel import Enum, Hash, UInt32Adapter, UnsignedIntegerAdapter
from .envelope import Envelope, RLPValue
from .exceptions import MalformedEnvelopeError
from .identifiers import Identifier, encode_api, transaction_hash

__all__ = (  # noqa: RUF022
    'TransactionType',
    'FieldKind',
    'Field',
    'TransactionLayout',
    'SignedTransaction',
    'transcode',
    'decode_signed_transactions',
    'transaction_reference',
)


log = logging.getLogger(__name__)


class TransactionType(Enum, size=4):
    signed_transaction = 11
    spend = 12
    oracle_register = 22
    oracle_query = 23
    oracle_response = 24
    oracle_extend = 25
    name_claim = 32
    name_preclaim = 33
    name_update = 34
    name_revoke = 35
    name_transfer = 36
    contract_create = 42
    contract_call = 43


class FieldKind(StrEnum):
    integer = 'integer'
    identifier = 'identifier'
    binary = 'binary'
    string = 'string'
    pointers = 'pointers'


def _as_bytes(value: RLPValue, name: str) -> bytes:
    if not isinstance(value, bytes):
        raise MalformedEnvelopeError(f'Expected a byte string for the {name!r} field, got a list')
    return value


def _as_integer(value: RLPValue, name: str, adapter: type[UnsignedIntegerAdapter] | None = None) -> int:
    number = int.from_bytes(_as_bytes(value, name), byteorder='big')
    if adapter is None:
        return number  # amounts, fees and gas prices are not bounded
    try:
        return adapter.validate(number)
    except ValueError as exc:
        raise MalformedEnvelopeError(f'Invalid value for the {name!r} field: {exc}') from exc


def _as_identifier(value: RLPValue, name: str) -> str:
    try:
        return str(Identifier(_as_bytes(value, name)))
    except ValueError as exc:
        raise MalformedEnvelopeError(f'Invalid identifier for the {name!r} field: {exc}') from exc


def _as_string(value: RLPValue, name: str) -> str:
    try:
        return _as_bytes(value, name).decode()
    except UnicodeDecodeError as exc:
        raise MalformedEnvelopeError(f'Invalid UTF-8 string for the {name!r} field: {exc}') from exc


def _as_pointers(value: RLPValue, name: str) -> list[dict[str, str]]:
    if not isinstance(value, list):
        raise MalformedEnvelopeError(f'Expected a list for the {name!r} field, got a byte string')
    pointers = []
    for pointer in value:
        if not isinstance(pointer, list) or len(pointer) != 2:
            raise MalformedEnvelopeError(f'Invalid name pointer in the {name!r} field: {pointer!r}')
        key, identifier = pointer
        pointers.append({'key': _as_string(key, name), 'id': _as_identifier(identifier, name)})
    return pointers


def _as_generic(value: RLPValue) -> object:
    if isinstance(value, bytes):
        return value.hex()
    return [_as_generic(item) for item in value]


@dataclass(frozen=True, slots=True)
class Field:
    name: str
    kind: FieldKind = FieldKind.integer
    prefix: str | None = None

    def render(self, value: RLPValue) -> object:
        match self.kind:
            case FieldKind.integer:
                return _as_integer(value, self.name)
            case FieldKind.identifier:
                return _as_identifier(value, self.name)
            case FieldKind.binary:
                assert self.prefix is not None  # noqa: S101 (used by type checkers)
                return encode_api(self.prefix, _as_bytes(value, self.name))
            case FieldKind.string:
                return _as_string(value, self.name)
            case FieldKind.pointers:
                return _as_pointers(value, self.name)


@dataclass(kw_only=True, slots=True)
class TransactionLayout:
    type: Final[TransactionType]
    version: Final[int]
    fields: Final[tuple[Field, ...]]

    _registry: ClassVar[MutableMapping[tuple[int, int], Self]] = {}

    def __post_init__(self) -> None:
        key = (self.type, self.version)
        if key in self._registry:
            raise ValueError(f'The layout for {self.type.name} version {self.version} is already defined')
        for field in self.fields:
            if field.kind is FieldKind.binary and field.prefix is None:
                raise ValueError(f'The binary field {field.name!r} of {self.type.name} must define its API encoding prefix')
        self._registry[key] = self

    @classmethod
    def lookup(cls, transaction_type: int, version: int) -> Self:
        return cls._registry[transaction_type, version]


_id = FieldKind.identifier
_binary = FieldKind.binary
_string = FieldKind.string

TransactionLayout(
    type=TransactionType.spend,
    version=1,
    fields=(
        Field('sender_id', _id),
        Field('recipient_id', _id),
        Field('amount'),
        Field('fee'),
        Field('ttl'),
        Field('nonce'),
        Field('payload', _binary, 'ba'),
    ),
)

TransactionLayout(
    type=TransactionType.oracle_register,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('query_format', _string),
        Field('response_format', _string),
        Field('query_fee'),
        Field('oracle_ttl_type'),
        Field('oracle_ttl_value'),
        Field('fee'),
        Field('ttl'),
        Field('abi_version'),
    ),
)

TransactionLayout(
    type=TransactionType.oracle_query,
    version=1,
    fields=(
        Field('sender_id', _id),
        Field('nonce'),
        Field('oracle_id', _id),
        Field('query', _binary, 'ov'),
        Field('query_fee'),
        Field('query_ttl_type'),
        Field('query_ttl_value'),
        Field('response_ttl_type'),
        Field('response_ttl_value'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.oracle_response,
    version=1,
    fields=(
        Field('oracle_id', _id),
        Field('nonce'),
        Field('query_id', _binary, 'oq'),
        Field('response', _binary, 'or'),
        Field('response_ttl_type'),
        Field('response_ttl_value'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.oracle_extend,
    version=1,
    fields=(
        Field('oracle_id', _id),
        Field('nonce'),
        Field('oracle_ttl_type'),
        Field('oracle_ttl_value'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_claim,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('name', _string),
        Field('name_salt'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_claim,
    version=2,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('name', _string),
        Field('name_salt'),
        Field('name_fee'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_preclaim,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('commitment_id', _id),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_update,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('name_id', _id),
        Field('name_ttl'),
        Field('pointers', FieldKind.pointers),
        Field('client_ttl'),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_revoke,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('name_id', _id),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.name_transfer,
    version=1,
    fields=(
        Field('account_id', _id),
        Field('nonce'),
        Field('name_id', _id),
        Field('recipient_id', _id),
        Field('fee'),
        Field('ttl'),
    ),
)

TransactionLayout(
    type=TransactionType.contract_create,
    version=1,
    fields=(
        Field('owner_id', _id),
        Field('nonce'),
        Field('code', _binary, 'cb'),
        Field('ct_version'),
        Field('fee'),
        Field('ttl'),
        Field('deposit'),
        Field('amount'),
        Field('gas'),
        Field('gas_price'),
        Field('call_data', _binary, 'cb'),
    ),
)

TransactionLayout(
    type=TransactionType.contract_call,
    version=1,
    fields=(
        Field('caller_id', _id),
        Field('nonce'),
        Field('contract_id', _id),
        Field('abi_version'),
        Field('fee'),
        Field('ttl'),
        Field('amount'),
        Field('gas'),
        Field('gas_price'),
        Field('call_data', _binary, 'cb'),
    ),
)

del _id, _binary, _string


def transcode(tag: int, values: Sequence[RLPValue]) -> dict[str, object]:
    """Render a decoded transaction as a record with named fields"""
    if len(values) < 2:
        raise MalformedEnvelopeError(f'A transaction needs at least a tag and a version, got {len(values)} values')
    version = _as_integer(values[1], 'version', UInt32Adapter)
    try:
        layout = TransactionLayout.lookup(tag, version)
    except KeyError:
        return {'type': tag, 'version': version, 'fields': [_as_generic(value) for value in values[2:]]}
    fields = values[2:]
    if len(fields) != len(layout.fields):
        raise MalformedEnvelopeError(f'A {layout.type.name} version {version} transaction has {len(layout.fields)} fields, got {len(fields)}')
    record: dict[str, object] = {'type': layout.type.name, 'version': version}
    record.update((field.name, field.render(value)) for field, value in zip(layout.fields, fields, strict=True))
    return record


@dataclass(frozen=True, kw_only=True)
class SignedTransaction:
    hash: str
    signatures: tuple[str, ...]
    transaction: Mapping[str, object]

    @classmethod
    def from_wire(cls, data: bytes) -> Self:
        envelope = Envelope(data)
        signatures = tuple(encode_api('sg', item.data) for item in envelope.at(2))
        inner = Envelope(envelope.bytes_at(3))
        if not inner.is_list:
            raise MalformedEnvelopeError('The inner transaction must be a list')
        values = inner.decode()
        assert isinstance(values, list)  # noqa: S101 (used by type checkers)
        if not values:
            raise MalformedEnvelopeError('The inner transaction is empty')
        tag = _as_integer(values[0], 'tag', UInt32Adapter)
        return cls(hash=transaction_hash(data), signatures=signatures, transaction=transcode(tag, values))


def decode_signed_transactions(envelopes: Iterable[Envelope]) -> tuple[SignedTransaction, ...]:
    transactions = []
    for envelope in envelopes:
        transaction = SignedTransaction.from_wire(envelope.data)
        log.debug('Decoded transaction %s: %r', transaction.hash, transaction.transaction)
        transactions.append(transaction)
    return tuple(transactions)


def transaction_reference(data: bytes) -> str:
    """Render an item of a light micro block transaction list"""
    if Identifier.is_identifier(data):
        return str(Identifier(data))
    if len(data) == Hash._size_:
        return encode_api('th', data)
    return transaction_hash(data)

# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Peer to peer messages.

Every message travels in a frame made of two parts:

     +-------------------------+
     |  Message type (uint16)  |
     +-------------------------+
     |      RLP envelope       |
     +-------------------------+

   Message type:  The big endian tag that identifies the message kind.
      Unknown tags are legal and the messages that carry them are
      ignored, as new message kinds can be added to the protocol at
      any time.

   RLP envelope:  A single RLP item, usually a list, whose shape is
      defined by the message type. Some list items are byte strings
      that hold further RLP items (a serialized block, a signed
      transaction, the object of a response) or binary records with
      a fixed layout (the block headers).

Inbound frames are decoded with decode_frame() (or dispatch() when the
tag and body are already separated) and turned into message objects.
Outbound messages are serialized with encode_frame().
"""

import logging
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from io import BytesIO
from itertools import batched
from types import MappingProxyType
from typing import ClassVar, Self

import rlp

from aewire.configuration import Configuration

from .datamodel import MessageType, UInt8Adapter, UInt16Adapter, WireData
from .envelope import Envelope
from .exceptions import DecodeError, MalformedEnvelopeError, ProtocolInvariantError, TruncatedRecordError
from .headers import KeyHeader, MicroHeader, MicroHeaderLayout, decode_key_header, decode_micro_header
from .identifiers import Identifier, IdentifierType, encode_api, transaction_hash
from .transactions import SignedTransaction, TransactionType, decode_signed_transactions, transaction_reference, transcode

__all__ = (  # noqa: RUF022
    # Messages

    'Message',
    'P2PResponse',
    'KeyBlocks',
    'MicroBlock',
    'Transactions',
    'TxPoolSyncInit',
    'Ping',

    # Dispatching and encoding

    'Handler',
    'handlers',
    'dispatch',
    'decode_frame',
    'encode_frame',
    'mangle',

    # Re-exported building blocks

    'Envelope',
    'MessageType',
    'KeyHeader',
    'MicroHeader',
    'MicroHeaderLayout',
    'decode_key_header',
    'decode_micro_header',
    'Identifier',
    'IdentifierType',
    'encode_api',
    'transaction_hash',
    'SignedTransaction',
    'TransactionType',
    'transcode',

    # Errors

    'DecodeError',
    'MalformedEnvelopeError',
    'ProtocolInvariantError',
    'TruncatedRecordError',
)


log = logging.getLogger(__name__)


KEY_BLOCK_MARKER = 1
TRANSACTIONS_VERSION = 1
PING_VERSION = 1


def _message_type(code: int) -> MessageType | int:
    try:
        return MessageType(code)
    except ValueError:
        return code


# Inbound messages

type MessageClass = type[Message]


@dataclass(frozen=True, kw_only=True)
class Message:
    # the message type should be provided by subclasses

    _type_: ClassVar[MessageType | None] = None
    _registry_: ClassVar[MutableMapping[MessageType, MessageClass]] = {}

    def __init_subclass__(cls, *, type: MessageType | None = None, **kw: object) -> None:  # noqa: A002
        super().__init_subclass__(**kw)
        if type is None:
            raise TypeError(f'Message class {cls.__qualname__!r} must define its message type')
        cls._type_ = type
        if cls._registry_.setdefault(type, cls) is not cls:
            raise TypeError(f'Message type {type.name!r} is already handled by {cls._registry_[type].__qualname__!r}')

    def __class_getitem__(cls, message_type: int) -> MessageClass:
        try:
            return cls._registry_[message_type]  # type: ignore[index]
        except KeyError as exc:
            raise TypeError(f'Unknown message type {message_type!r}') from exc

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class P2PResponse(Message, type=MessageType.p2p_response):
    """
    The response to a request. The body holds the object of type response_type
    when the request was successful or is empty otherwise, in which case the
    reason explains what went wrong.
    """

    version: int
    result: bool
    response_type: MessageType | int
    reason: str
    body: bytes
    payload: Envelope | None = None

    @property
    def success(self) -> bool:
        return self.result

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:
        version, result, response_type, reason, body = envelope.unpack(5)
        success = result.to_int(UInt8Adapter) != 0
        try:
            # the reason only matters for failed requests
            reason_text = reason.data.decode(errors='replace' if success else 'strict')
        except UnicodeDecodeError as exc:
            raise MalformedEnvelopeError(f'The response reason is not valid UTF-8: {exc}') from exc
        payload = Envelope(body.data) if body.data else None
        if payload is not None:
            # traverse the whole payload, a malformed one is an error even if it is not logged
            description = payload.describe()
            log.debug('Response payload:\n%s', description)
        return cls(
            version=version.to_int(UInt8Adapter),
            result=success,
            response_type=_message_type(response_type.to_int(UInt8Adapter)),
            reason=reason_text,
            body=body.data,
            payload=payload,
        )


@dataclass(frozen=True, kw_only=True)
class KeyBlocks(Message, type=MessageType.key_block):
    headers: tuple[KeyHeader, ...]

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:
        items = tuple(envelope)
        if len(items) % 2:
            raise ProtocolInvariantError(f'A key block message must have an even number of items, got {len(items)}')
        headers = []
        for marker, record in batched(items, 2):
            if (value := marker.to_int(UInt16Adapter)) != KEY_BLOCK_MARKER:
                raise ProtocolInvariantError(f'Invalid key block marker: {value} (expected {KEY_BLOCK_MARKER})')
            header = decode_key_header(record.data)
            log.debug('Key block at height %d', header.height)
            headers.append(header)
        return cls(headers=tuple(headers))


@dataclass(frozen=True, kw_only=True)
class MicroBlock(Message, type=MessageType.micro_block):
    """
    A serialized micro block. The transactions of a normal micro block are
    full signed transactions, while a light micro block only carries their
    hashes.
    """

    version: int
    light: bool
    header: MicroHeader
    transactions: tuple[SignedTransaction, ...] = ()
    transaction_references: tuple[str, ...] = ()

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:
        version, block, light = envelope.unpack(3)
        block_envelope = Envelope(block.data)
        if log.isEnabledFor(logging.DEBUG):
            log.debug('Micro block:\n%s', block_envelope.describe())
        header = decode_micro_header(block_envelope.bytes_at(2))
        transactions_envelope = block_envelope.at(3)
        is_light = light.to_int(UInt8Adapter) != 0
        if is_light:
            items = transactions_envelope.decode()
            if not isinstance(items, list) or not all(isinstance(item, bytes) for item in items):
                raise MalformedEnvelopeError('The transactions of a light micro block must be a list of byte strings')
            references = tuple(transaction_reference(item) for item in items)  # type: ignore[arg-type]
            return cls(version=version.to_int(UInt8Adapter), light=True, header=header, transaction_references=references)
        _, transactions = _decode_transaction_list(transactions_envelope)
        return cls(version=version.to_int(UInt8Adapter), light=False, header=header, transactions=transactions)


@dataclass(frozen=True, kw_only=True)
class Transactions(Message, type=MessageType.txs):
    version: int
    transactions: tuple[SignedTransaction, ...]

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:
        version, transactions = _decode_transaction_list(envelope)
        return cls(version=version, transactions=transactions)


def _decode_transaction_list(envelope: Envelope) -> tuple[int, tuple[SignedTransaction, ...]]:
    # [version, [signed_transaction, ...]], used by the txs message and by full micro blocks
    version, transactions = envelope.unpack(2)
    if (value := version.to_int(UInt8Adapter)) != TRANSACTIONS_VERSION:
        raise ProtocolInvariantError(f'Unsupported transactions message version: {value} (expected {TRANSACTIONS_VERSION})')
    return value, decode_signed_transactions(transactions)


@dataclass(frozen=True, kw_only=True)
class TxPoolSyncInit(Message, type=MessageType.tx_pool_sync_init):
    # The message has no body

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> Self:  # noqa: ARG003
        return cls()


# Dispatching

type Handler = Callable[[Envelope], Message]

handlers: Mapping[int, Handler] = MappingProxyType({message_type: message_class.from_envelope for message_type, message_class in Message._registry_.items()})


def dispatch(tag: int, body: Envelope) -> Message | None:
    """Decode the body of a message with the given tag. Returns None for messages that are ignored."""
    handler = handlers.get(tag)
    if handler is None:
        log.debug('Ignoring message of type %r', _message_type(tag))
        return None
    message = handler(body)
    log.debug('Decoded %r', message)
    return message


def decode_frame(frame: WireData) -> Message | None:
    data = frame.read() if isinstance(frame, BytesIO) else bytes(frame)
    if len(data) < UInt16Adapter._size_:
        raise MalformedEnvelopeError(f'A message frame must have at least {UInt16Adapter._size_} bytes, got {len(data)}')
    tag = UInt16Adapter.from_wire(data)
    if tag not in handlers:
        log.debug('Ignoring message of type %r', _message_type(tag))
        return None
    return dispatch(tag, Envelope(data[UInt16Adapter._size_:]))


# Outbound messages

@dataclass(frozen=True, kw_only=True)
class Ping:
    """The announcement a node sends to its peers to keep the connection alive"""

    _type_: ClassVar[MessageType] = MessageType.ping

    version: ClassVar[int] = PING_VERSION

    port: int
    share: int
    genesis_hash: bytes
    difficulty: int
    top_hash: bytes
    sync_allowed: bool

    def __post_init__(self) -> None:
        if UInt16Adapter.validate(self.port) == 0:
            raise ValueError(f'Invalid port: {self.port!r}')
        UInt16Adapter.validate(self.share)
        if self.difficulty < 0:
            raise ValueError(f'The difficulty cannot be negative: {self.difficulty!r}')

    @classmethod
    def new(cls, *, configuration: Configuration, top_hash: bytes, difficulty: int) -> Self:
        return cls(
            port=configuration.port,
            share=configuration.share,
            genesis_hash=configuration.genesis_hash,
            difficulty=difficulty,
            top_hash=top_hash,
            sync_allowed=configuration.sync_allowed,
        )

    def to_items(self) -> list[object]:
        # the last item is the list of peers, which is always sent empty
        return [self.version, self.port, self.share, self.genesis_hash, self.difficulty, self.top_hash, int(self.sync_allowed), []]


def mangle(data: bytes) -> bytes:
    """Rewrite every 0x80 byte as 0x00, as peers expect for the encoding of zero"""
    return data.replace(b'\x80', b'\x00')


def encode_frame(message: Ping) -> bytes:
    return message._type_.to_wire() + mangle(rlp.encode(message.to_items()))


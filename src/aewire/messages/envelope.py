# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
A lazy view over RLP encoded data.

An envelope is either a scalar (a byte string) or a sequence of nested
envelopes. Only the header of the item an envelope refers to is parsed
when the envelope is created, the children of a sequence are produced on
demand while iterating. All the offsets are checked against the bounds of
the enclosing item, so a child can never extend past its parent.
"""

from collections.abc import Buffer, Iterator
from typing import Self

import rlp
from rlp.codec import consume_length_prefix
from rlp.exceptions import DecodingError

from .datamodel import UInt8Adapter, UnsignedIntegerAdapter
from .exceptions import MalformedEnvelopeError

__all__ = 'Envelope', 'RLPValue'  # noqa: RUF022


type RLPValue = bytes | list[RLPValue]

MAX_NESTING = 64  # the deepest list nesting decode() accepts


class Envelope:
    __slots__ = ('_buffer', '_end', '_payload', '_start', 'is_list')

    _buffer: bytes
    _start: int
    _payload: int
    _end: int
    is_list: bool

    def __init__(self, buffer: Buffer) -> None:
        data = bytes(buffer)
        if not data:
            raise MalformedEnvelopeError('Cannot create an envelope from an empty buffer')
        self._parse(data, 0, len(data))
        if self._end != len(data):
            raise MalformedEnvelopeError(f'The envelope is followed by {len(data) - self._end} trailing bytes')

    def __repr__(self) -> str:
        if self.is_list:
            return f'<{self.__class__.__qualname__}: list of {self.item_count()} items>'
        return f'<{self.__class__.__qualname__}: {self._end - self._payload} bytes>'

    def __iter__(self) -> Iterator[Self]:
        if not self.is_list:
            raise MalformedEnvelopeError('Cannot iterate over a scalar envelope')
        position = self._payload
        while position < self._end:
            item = self._child(position)
            yield item
            position = item._end

    @classmethod
    def _view(cls, buffer: bytes, start: int, limit: int) -> Self:
        instance = super().__new__(cls)
        instance._parse(buffer, start, limit)
        return instance

    def _parse(self, buffer: bytes, start: int, limit: int) -> None:
        try:
            _, item_type, length, payload = consume_length_prefix(buffer, start)
        except (DecodingError, IndexError) as exc:
            raise MalformedEnvelopeError(f'Invalid item header at offset {start}: {exc}') from exc
        end = payload + length
        if payload > limit or end > limit:
            raise MalformedEnvelopeError(f'The item at offset {start} extends past the end of its enclosing data ({end} > {limit})')
        self._buffer = buffer
        self._start = start
        self._payload = payload
        self._end = end
        self.is_list = item_type is list

    def _child(self, position: int) -> Self:
        return self._view(self._buffer, position, self._end)

    @property
    def data(self) -> bytes:
        """The content of a scalar envelope"""
        if self.is_list:
            raise MalformedEnvelopeError('Expected a byte string, got a list')
        return self._buffer[self._payload:self._end]

    @property
    def raw(self) -> bytes:
        """The encoded item, including its header"""
        return self._buffer[self._start:self._end]

    def item_count(self) -> int:
        return sum(1 for _ in self)

    def at(self, index: int) -> Self:
        for position, item in enumerate(self):
            if position == index:
                return item
        raise MalformedEnvelopeError(f'The envelope has no item at index {index} (it has {self.item_count()} items)')

    def unpack(self, count: int) -> tuple[Self, ...]:
        items = tuple(self)
        if len(items) != count:
            raise MalformedEnvelopeError(f'Expected a list with {count} items, got {len(items)}')
        return items

    def to_int(self, adapter: type[UnsignedIntegerAdapter] = UInt8Adapter) -> int:
        # Zero is sent either as an empty string or as a single 0x00 byte
        value = int.from_bytes(self.data, byteorder='big')
        try:
            return adapter.validate(value)
        except ValueError as exc:
            raise MalformedEnvelopeError(str(exc)) from exc

    def value_at(self, index: int, adapter: type[UnsignedIntegerAdapter] = UInt8Adapter) -> int:
        return self.at(index).to_int(adapter)

    def bytes_at(self, index: int) -> bytes:
        return self.at(index).data

    def depth(self) -> int:
        """The nesting level of the item (1 for a scalar or an empty list)"""
        depth = 0
        stack = [(1, self)]
        while stack:
            level, envelope = stack.pop()
            depth = max(depth, level)
            if envelope.is_list:
                stack.extend((level + 1, item) for item in envelope)
        return depth

    def decode(self) -> RLPValue:
        """Decode the whole item into nested byte strings and lists"""
        if (depth := self.depth()) > MAX_NESTING:
            raise MalformedEnvelopeError(f'Cannot decode envelope: it is nested too deeply ({depth} > {MAX_NESTING} levels)')
        try:
            return rlp.decode(self.raw)
        except DecodingError as exc:
            raise MalformedEnvelopeError(f'Cannot decode envelope: {exc}') from exc

    def describe(self, indent: int = 0) -> str:
        lines = []
        stack = [(indent, self)]
        while stack:
            level, envelope = stack.pop()
            prefix = level * '  '
            if envelope.is_list:
                items = list(envelope)
                lines.append(f'{prefix}List, length is {len(items)}')
                stack.extend((level + 1, item) for item in reversed(items))
            else:
                lines.append(f'{prefix}Data, size is {envelope._end - envelope._payload} content is {envelope.data.hex()}')
        return '\n'.join(lines)

# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = 'DecodeError', 'MalformedEnvelopeError', 'ProtocolInvariantError', 'TruncatedRecordError'


class DecodeError(ValueError):
    """Base class for the errors raised while decoding a message."""


class MalformedEnvelopeError(DecodeError):
    """Raised when an envelope is not valid RLP or does not have the shape a message requires."""


class ProtocolInvariantError(DecodeError):
    """Raised when a well formed message breaks a protocol rule (wrong marker, version or batch size)."""


class TruncatedRecordError(DecodeError):
    """Raised when a binary record is shorter than the size its layout requires."""

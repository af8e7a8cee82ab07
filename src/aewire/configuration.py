# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass
from typing import Final

__all__ = 'Configuration',  # noqa: COM818


@dataclass(kw_only=True, frozen=True)
class Configuration:
    """The node settings announced to peers"""

    genesis_hash: Final[bytes]
    port: Final[int] = 3015
    share: Final[int] = 32
    sync_allowed: Final[bool] = True

    def __post_init__(self) -> None:
        if len(self.genesis_hash) != 32:
            raise ValueError(f'The genesis hash must have 32 bytes, got {len(self.genesis_hash)}')
        if not 0 < self.port < 2**16:
            raise ValueError(f'Invalid port: {self.port!r}')
        if not 0 <= self.share < 2**16:
            raise ValueError(f'Invalid share value: {self.share!r}')

# Copyright (c) 2013-2025, Andrea Zoppi
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# 1. Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
# 2. Redistributions in binary form must reproduce the above copyright
#    notice, this list of conditions and the following disclaimer in the
#    documentation and/or other materials provided with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

r"""Block write planning.

The HalfKay bootloader receives the firmware one flash block at a time.
Each transfer carries a header encoding the block address, whose layout
depends on the MCU geometry, followed by the block data.
"""

import enum
from typing import Iterator

from .errors import UnsupportedGeometry
from .ihex import FirmwareImage

FIRST_BLOCK_TIMEOUT: float = 5.0
r"""Write timeout of the first block, which also erases the chip."""

BLOCK_TIMEOUT: float = 0.5
r"""Write timeout of the following blocks."""

BOOT_TIMEOUT: float = 0.5
r"""Write timeout of the boot command."""


class HeaderFormat(enum.Enum):
    r"""Block header encoding."""

    ADDRESS16 = 'address16'
    r"""16-bit little-endian address; small AVR chips."""

    PAGE16 = 'page16'
    r"""16-bit little-endian address bits 23:8; 128 KiB AVR chips."""

    ADDRESS24 = 'address24'
    r"""24-bit little-endian address, padded to 64 bytes; ARM chips."""

    @property
    def header_size(self) -> int:

        if self is HeaderFormat.ADDRESS24:
            return 64
        return 2

    def encode(self, address: int) -> bytes:
        r"""Encodes the header of a block.

        Args:
            address (int):
                Block address.

        Returns:
            bytes: Header, :attr:`header_size` bytes long.

        Examples:
            >>> HeaderFormat.ADDRESS16.encode(0x1280)
            b'\x80\x12'
            >>> HeaderFormat.PAGE16.encode(0x12300)
            b'#\x01'
            >>> len(HeaderFormat.ADDRESS24.encode(0x12400))
            64
        """

        if self is HeaderFormat.ADDRESS16:
            return (address & 0xFFFF).to_bytes(2, byteorder='little')

        elif self is HeaderFormat.PAGE16:
            return ((address >> 8) & 0xFFFF).to_bytes(2, byteorder='little')

        else:
            header = (address & 0xFFFFFF).to_bytes(3, byteorder='little')
            return header + bytes(61)


def header_format_for(code_size: int, block_size: int) -> HeaderFormat:
    r"""Selects the block header encoding of a geometry.

    Args:
        code_size (int):
            Flash size.

        block_size (int):
            Write block size.

    Returns:
        :class:`HeaderFormat`: Header encoding.

    Raises:
        :class:`halfkay.errors.UnsupportedGeometry`: No rule matches.

    Examples:
        >>> header_format_for(32256, 128)
        <HeaderFormat.ADDRESS16: 'address16'>
        >>> header_format_for(130048, 256)
        <HeaderFormat.PAGE16: 'page16'>
        >>> header_format_for(131072, 1024)
        <HeaderFormat.ADDRESS24: 'address24'>
    """

    if block_size <= 256 and code_size < 0x10000:
        return HeaderFormat.ADDRESS16
    if block_size == 256:
        return HeaderFormat.PAGE16
    if block_size in (512, 1024):
        return HeaderFormat.ADDRESS24
    raise UnsupportedGeometry(f'unknown code/block size: {code_size}/{block_size}')


def write_size(code_size: int, block_size: int) -> int:
    r"""Size of each bootloader write transfer.

    Examples:
        >>> write_size(131072, 1024)
        1088
        >>> write_size(32256, 128)
        130
    """

    return block_size + header_format_for(code_size, block_size).header_size


def boot_payload(code_size: int, block_size: int) -> bytes:
    r"""Builds the command which makes the bootloader jump to the application.

    Examples:
        >>> payload = boot_payload(32256, 128)
        >>> len(payload), payload[:4]
        (130, b'\xff\xff\xff\x00')
    """

    return b'\xFF\xFF\xFF' + bytes(write_size(code_size, block_size) - 3)


class Block:
    r"""Planned block write.

    Args:
        address (int):
            Flash address of the block.

        data (bytes):
            Block contents.

        header_format (:class:`HeaderFormat`):
            Header encoding.

        timeout (float):
            Write timeout budget, in seconds.
    """

    def __init__(
        self,
        address: int,
        data: bytes,
        header_format: HeaderFormat,
        timeout: float,
    ):

        self.address: int = address
        self.data: bytes = data
        self.header_format: HeaderFormat = header_format
        self.timeout: float = timeout

    def __repr__(self) -> str:

        return (f'<{type(self).__name__} address=0x{self.address:06X} '
                f'size={len(self.data)} timeout={self.timeout}>')

    def __len__(self) -> int:

        return self.header_format.header_size + len(self.data)

    def to_bytes(self) -> bytes:
        r"""Serializes the block as sent to the bootloader."""

        return self.header_format.encode(self.address) + self.data


def plan_blocks(
    image: FirmwareImage,
    code_size: int,
    block_size: int,
) -> Iterator[Block]:
    r"""Plans the block writes of an image.

    The first block is always written, because writing it erases the chip.
    Any following block is skipped if none of its bytes was written by the
    firmware file, or if all of its written bytes are blank.

    The geometry is checked immediately; blocks are generated lazily.

    Args:
        image (:class:`halfkay.ihex.FirmwareImage`):
            Firmware image.

        code_size (int):
            Flash size.

        block_size (int):
            Write block size.

    Returns:
        iterator of :class:`Block`: Blocks to write, by increasing address.

    Raises:
        :class:`halfkay.errors.UnsupportedGeometry`: No header rule matches.
    """

    header_format = header_format_for(code_size, block_size)
    return _iter_blocks(image, code_size, block_size, header_format)


def _iter_blocks(
    image: FirmwareImage,
    code_size: int,
    block_size: int,
    header_format: HeaderFormat,
) -> Iterator[Block]:

    for address in range(0, code_size, block_size):
        first = not address
        endex = address + block_size

        if not first:
            if not image.bytes_in_range(address, endex):
                continue
            if image.is_blank(address, block_size):
                continue

        data = image.get_data(address, block_size)
        timeout = FIRST_BLOCK_TIMEOUT if first else BLOCK_TIMEOUT
        yield Block(address, data, header_format, timeout)

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

r"""Intel HEX loader.

Reads an Intel HEX text file into a sparse :class:`FirmwareImage`.

See Also:
    `<https://en.wikipedia.org/wiki/Intel_HEX>`_
"""

import enum
import logging
import re
from typing import IO
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple

from bytesparse import Memory

from .errors import FileError
from .errors import ParseError
from .errors import ProtocolLimitError
from .utils import AnyBytes
from .utils import hexlify
from .utils import unhexlify

_logger = logging.getLogger(__name__)

MAX_MEMORY_SIZE: int = 0x1000000
r"""Maximum flash image size supported."""

BLANK_BYTE: int = 0xFF
r"""Value of erased flash, and of any byte not written by the file."""

FLEXSPI_OFFSET: int = 0x60000000
r"""FlexSPI mapping of the flash on the i.MX RT chips."""

MIN_LINE_SIZE: int = 11
r"""Colon, count, address, tag, checksum."""


class IhexTag(enum.IntEnum):
    r"""Intel HEX record tag."""

    DATA = 0
    r"""Binary data."""

    END_OF_FILE = 1
    r"""End Of File."""

    EXTENDED_SEGMENT_ADDRESS = 2
    r"""Extended Segment Address."""

    START_SEGMENT_ADDRESS = 3
    r"""Start Segment Address."""

    EXTENDED_LINEAR_ADDRESS = 4
    r"""Extended Linear Address."""

    START_LINEAR_ADDRESS = 5
    r"""Start Linear Address."""

    def is_data(self) -> bool:

        return self == self.DATA

    def is_eof(self) -> bool:
        r"""Tells whether this is an End Of File record tag.

        Examples:
            >>> IhexTag.END_OF_FILE.is_eof()
            True
            >>> IhexTag.DATA.is_eof()
            False
        """

        return self == self.END_OF_FILE

    def is_extension(self) -> bool:
        r"""Tells whether this is an Extended Address record tag.

        Examples:
            >>> IhexTag.EXTENDED_LINEAR_ADDRESS.is_extension()
            True
            >>> IhexTag.EXTENDED_SEGMENT_ADDRESS.is_extension()
            True
            >>> IhexTag.DATA.is_extension()
            False
        """

        return ((self == self.EXTENDED_SEGMENT_ADDRESS) or
                (self == self.EXTENDED_LINEAR_ADDRESS))


class IhexRecord:
    r"""Intel HEX record object.

    Args:
        tag (int):
            Record tag; unknown tags are kept as plain integers.

        address (int):
            16-bit address field.

        data (bytes):
            Record payload.

        count (int):
            Count field; computed from `data` if ``None``.

        checksum (int):
            Checksum field; computed if ``None``.
    """

    LINE_REGEX = re.compile(
        b'^:'
        b'(?P<count>[0-9A-Fa-f]{2})'
        b'(?P<address>[0-9A-Fa-f]{4})'
        b'(?P<tag>[0-9A-Fa-f]{2})'
        b'(?P<data>([0-9A-Fa-f]{2})*)'
        b'(?P<checksum>[0-9A-Fa-f]{2})$'
    )
    r"""Line parser regex."""

    def __init__(
        self,
        tag: int,
        address: int = 0,
        data: AnyBytes = b'',
        count: Optional[int] = None,
        checksum: Optional[int] = None,
    ):

        try:
            tag = IhexTag(tag)
        except ValueError:
            pass

        self.tag: int = tag
        self.address: int = address
        self.data: bytes = bytes(data)
        self.count: int = self.compute_count() if count is None else count
        self.checksum: int = self.compute_checksum() if checksum is None else checksum

    def __eq__(self, other) -> bool:

        if not isinstance(other, IhexRecord):
            return NotImplemented

        return (self.tag == other.tag and
                self.address == other.address and
                self.data == other.data and
                self.count == other.count and
                self.checksum == other.checksum)

    def __repr__(self) -> str:

        return (f'<{type(self).__name__} tag=0x{int(self.tag):02X} '
                f'address=0x{self.address:04X} count={self.count}>')

    def compute_checksum(self) -> int:

        address = self.address & 0xFFFF
        checksum = ((self.count & 0xFF) +
                    (address >> 8) + (address & 0xFF) +
                    (int(self.tag) & 0xFF) +
                    sum(self.data))
        checksum = (0x100 - (checksum & 0xFF)) & 0xFF
        return checksum

    def compute_count(self) -> int:

        return len(self.data)

    def data_to_int(self) -> int:
        r"""Interprets the payload as a big-endian integer.

        Examples:
            >>> IhexRecord.create_extended_linear_address(0x6000).data_to_int()
            24576
        """

        return int.from_bytes(self.data, byteorder='big')

    @classmethod
    def create_data(
        cls,
        address: int,
        data: AnyBytes,
    ) -> 'IhexRecord':

        address = address.__index__()
        if not 0 <= address <= 0xFFFF:
            raise ProtocolLimitError('address overflow')

        if len(data) > 0xFF:
            raise ProtocolLimitError('data size overflow')

        return cls(IhexTag.DATA, address=address, data=data)

    @classmethod
    def create_end_of_file(cls) -> 'IhexRecord':
        r"""Creates an End Of File record.

        Examples:
            >>> IhexRecord.create_end_of_file().to_bytestr()
            b':00000001FF\r\n'
        """

        return cls(IhexTag.END_OF_FILE)

    @classmethod
    def create_extended_linear_address(cls, extension: int) -> 'IhexRecord':
        r"""Creates an Extended Linear Address record.

        Args:
            extension (int):
                Bits 31:16 of the address of the following data records.

        Examples:
            >>> IhexRecord.create_extended_linear_address(0x1234).to_bytestr()
            b':020000041234B4\r\n'
        """

        extension = extension.__index__()
        if not 0 <= extension <= 0xFFFF:
            raise ValueError('extension overflow')

        data = extension.to_bytes(2, byteorder='big')
        return cls(IhexTag.EXTENDED_LINEAR_ADDRESS, data=data)

    @classmethod
    def create_extended_segment_address(cls, extension: int) -> 'IhexRecord':
        r"""Creates an Extended Segment Address record.

        Args:
            extension (int):
                Bits 19:4 of the address of the following data records.

        Examples:
            >>> IhexRecord.create_extended_segment_address(0x1234).to_bytestr()
            b':020000021234B6\r\n'
        """

        extension = extension.__index__()
        if not 0 <= extension <= 0xFFFF:
            raise ValueError('extension overflow')

        data = extension.to_bytes(2, byteorder='big')
        return cls(IhexTag.EXTENDED_SEGMENT_ADDRESS, data=data)

    @classmethod
    def parse(cls, line: AnyBytes) -> 'IhexRecord':
        r"""Parses a record line.

        Trailing whitespace (line terminator included) is ignored.
        The checksum is *not* verified here; see :meth:`validate`.

        Args:
            line (bytes):
                Record line.

        Returns:
            :class:`IhexRecord`: Parsed record.

        Raises:
            :class:`halfkay.errors.ParseError`: Malformed line.

        Examples:
            >>> record = IhexRecord.parse(b':0300300002337A1E\r\n')
            >>> record.address, record.data
            (48, b'\x023z')
        """

        line = bytes(line).rstrip()

        if not line.startswith(b':'):
            raise ParseError('missing record mark')

        if len(line) < MIN_LINE_SIZE:
            raise ParseError('line too short')

        try:
            count = int(line[1:3], 16)
        except ValueError:
            raise ParseError('invalid count field') from None

        if len(line) != MIN_LINE_SIZE + (count * 2):
            raise ParseError('line length does not match count')

        match = cls.LINE_REGEX.match(line)
        if not match:
            raise ParseError('syntax error')

        groups = match.groupdict()
        record = cls(int(groups['tag'], 16),
                     address=int(groups['address'], 16),
                     data=unhexlify(groups['data']),
                     count=count,
                     checksum=int(groups['checksum'], 16))
        return record

    def to_bytestr(self, end: AnyBytes = b'\r\n') -> bytes:

        bytestr = b':%02X%04X%02X%s%02X%s' % (
            self.count & 0xFF,
            self.address & 0xFFFF,
            int(self.tag) & 0xFF,
            hexlify(self.data),
            self.checksum & 0xFF,
            end,
        )
        return bytestr

    def validate(
        self,
        checksum: bool = True,
        count: bool = True,
    ) -> 'IhexRecord':
        r"""Validates the record fields.

        Raises:
            :class:`halfkay.errors.ParseError`: Inconsistent fields.
            :class:`halfkay.errors.ProtocolLimitError`: Payload too large.
        """

        if len(self.data) > 0xFF:
            raise ProtocolLimitError('data size overflow')

        if not 0 <= self.address <= 0xFFFF:
            raise ParseError('address overflow')

        if count and self.count != self.compute_count():
            raise ParseError('wrong count')

        if checksum and self.checksum != self.compute_checksum():
            raise ParseError('checksum mismatch')

        return self


class FirmwareImage:
    r"""Sparse firmware image.

    The populated addresses of the underlying memory are exactly those
    written by some data record, i.e. they are the *written mask*.
    Any other address reads as :data:`BLANK_BYTE`.

    The image is meant to be read-only once loaded.

    Args:
        memory (:class:`bytesparse.Memory`):
            Memory holding the written bytes.

    Examples:
        >>> from bytesparse import Memory
        >>> memory = Memory()
        >>> _ = memory.write(0x10, b'\x00\x01')
        >>> image = FirmwareImage(memory)
        >>> image[0x10], image[0x11], image[0x12]
        (0, 1, 255)
        >>> image.is_written(0x11), image.is_written(0x12)
        (True, False)
        >>> image.get_data(0x0F, 4)
        b'\xff\x00\x01\xff'
    """

    def __init__(self, memory: Optional[Memory] = None):

        if memory is None:
            memory = Memory()
        self._memory: Memory = memory
        self._intervals: Optional[List[Tuple[int, int]]] = None

    def __getitem__(self, address: int) -> int:

        value = self._memory.peek(address)
        return BLANK_BYTE if value is None else value

    @property
    def memory(self) -> Memory:
        r""":class:`bytesparse.Memory`: Underlying sparse memory."""

        return self._memory

    @property
    def content_size(self) -> int:
        r"""int: Number of written addresses."""

        return sum(endex - start for start, endex in self.intervals())

    def intervals(self) -> List[Tuple[int, int]]:
        r"""Written address ranges.

        Returns:
            list of (int, int): Sorted ``(start, endex)`` ranges.
        """

        if self._intervals is None:
            intervals = []
            for start, endex in self._memory.intervals():
                if intervals and intervals[-1][1] == start:
                    start = intervals.pop()[0]
                intervals.append((start, endex))
            self._intervals = intervals
        return self._intervals

    def _overlapping(self, start: int, endex: int) -> Iterator[Tuple[int, int]]:

        for block_start, block_endex in self.intervals():
            if block_start >= endex:
                break
            if block_endex > start:
                yield max(block_start, start), min(block_endex, endex)

    def is_written(self, address: int) -> bool:

        return self._memory.peek(address) is not None

    def bytes_in_range(self, start: int, endex: int) -> bool:
        r"""Tells whether any byte within ``[start, endex)`` was written."""

        for _ in self._overlapping(start, endex):
            return True
        return False

    def get_data(self, address: int, size: int) -> bytes:
        r"""Reads a range, unwritten bytes reading as :data:`BLANK_BYTE`."""

        buffer = bytearray([BLANK_BYTE]) * size
        for start, endex in self._overlapping(address, address + size):
            view = self._memory.view(start=start, endex=endex)
            try:
                buffer[(start - address):(endex - address)] = view
            finally:
                view.release()
        return bytes(buffer)

    def is_blank(self, address: int, size: int) -> bool:
        r"""Tells whether all the written bytes of a range are blank."""

        for start, endex in self._overlapping(address, address + size):
            view = self._memory.view(start=start, endex=endex)
            try:
                if any(value != BLANK_BYTE for value in view):
                    return False
            finally:
                view.release()
        return True


class IhexLoader:
    r"""Intel HEX file loader.

    The MCU geometry is needed only for the FlexSPI address quirk: chips with
    more than 1 MiB of flash and blocks of at least 1 KiB store their code at
    :data:`FLEXSPI_OFFSET`, which is stripped from linear extensions falling
    within the flash window.

    Args:
        code_size (int):
            Flash size of the target MCU.

        block_size (int):
            Write block size of the target MCU.
    """

    def __init__(self, code_size: int = 0, block_size: int = 0):

        self.code_size: int = code_size
        self.block_size: int = block_size

    def linear_extension(self, value: int) -> int:
        r"""Computes the address extension of a linear extension record.

        Examples:
            >>> IhexLoader(2031616, 1024).linear_extension(0x6000)
            0
            >>> IhexLoader(262144, 1024).linear_extension(0x6000)
            1610612736
        """

        extension = value << 16
        if self.code_size > 0x100000 and self.block_size >= 1024:
            if FLEXSPI_OFFSET <= extension < FLEXSPI_OFFSET + self.code_size:
                extension -= FLEXSPI_OFFSET
        return extension

    def load(self, path: str) -> Tuple[int, FirmwareImage]:
        r"""Loads a file.

        Args:
            path (str):
                Path of the Intel HEX file.

        Returns:
            (int, :class:`FirmwareImage`): Number of data bytes carried by
            data records, and the loaded image.

        Raises:
            :class:`halfkay.errors.FileError`: Unable to open or read.
            :class:`halfkay.errors.ParseError`: Malformed line.
        """

        try:
            with open(path, 'rb') as stream:
                return self.read(stream, path=path)
        except OSError as exc:
            raise FileError(f'unable to open file {path!r}: {exc.strerror or exc}') from exc

    def read(
        self,
        stream: IO[bytes],
        path: Optional[str] = None,
    ) -> Tuple[int, FirmwareImage]:
        r"""Loads from a binary stream.

        See Also:
            :meth:`load`
        """

        memory = Memory()
        extension = 0
        byte_count = 0
        eof_seen = False

        for lineno, line in enumerate(stream, 1):
            if not line.strip():
                continue
            try:
                record = IhexRecord.parse(line).validate()
                tag = record.tag

                if tag == IhexTag.DATA:
                    address = record.address + extension
                    if address + record.count >= MAX_MEMORY_SIZE:
                        raise ProtocolLimitError('address overflow')
                    memory.write(address, record.data)
                    byte_count += record.count

                elif tag == IhexTag.END_OF_FILE:
                    eof_seen = True
                    break

                elif tag == IhexTag.EXTENDED_SEGMENT_ADDRESS:
                    if record.count == 2:
                        extension = record.data_to_int() << 4

                elif tag == IhexTag.EXTENDED_LINEAR_ADDRESS:
                    if record.count == 2:
                        extension = self.linear_extension(record.data_to_int())

                else:
                    _logger.debug('line %d: ignoring record type 0x%02X', lineno, tag)

            except ParseError as exc:
                exc.lineno = lineno
                exc.path = path
                raise

        if not eof_seen:
            _logger.warning('%s: no end of file record', path or 'stream')

        return byte_count, FirmwareImage(memory)


def load_ihex(
    path: str,
    code_size: int = 0,
    block_size: int = 0,
) -> Tuple[int, FirmwareImage]:
    r"""Loads an Intel HEX file.

    Shortcut for :meth:`IhexLoader.load`.
    """

    return IhexLoader(code_size, block_size).load(path)

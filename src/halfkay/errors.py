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

r"""Error taxonomy.

All the errors raised by the library derive from :class:`HalfkayError`, so
that the command line front end can report them uniformly.
"""

from typing import Optional


class HalfkayError(Exception):
    r"""Base class of all the library errors."""


class FileError(HalfkayError, OSError):
    r"""The firmware file cannot be opened or read."""


class ParseError(HalfkayError, ValueError):
    r"""Malformed Intel HEX line.

    Args:
        message (str):
            Human readable reason.

        lineno (int):
            1-based line number within the file, if known.

        path (str):
            File path, if known.
    """

    def __init__(
        self,
        message: str,
        lineno: Optional[int] = None,
        path: Optional[str] = None,
    ):

        super().__init__(message)
        self.message: str = message
        self.lineno: Optional[int] = lineno
        self.path: Optional[str] = path

    def __str__(self) -> str:

        text = self.message
        if self.lineno is not None:
            text = f'line {self.lineno}: {text}'
        if self.path is not None:
            text = f'{self.path!r}, {text}'
        return text


class ProtocolLimitError(ParseError):
    r"""Record beyond the hard limits (payload size, memory bound)."""


class UsbError(HalfkayError):
    r"""A USB transport primitive failed."""


class DeviceNotFound(HalfkayError):
    r"""No matching USB device could be opened."""


class DeviceBusy(HalfkayError):
    r"""The USB interface is claimed by another driver."""


class WriteTimeout(HalfkayError):
    r"""The write retry budget was exhausted."""


class UnsupportedGeometry(HalfkayError, ValueError):
    r"""No block header rule for the code/block size combination."""


class ConfigurationError(HalfkayError, ValueError):
    r"""Missing or inconsistent run configuration."""


class UnknownMcu(ConfigurationError):
    r"""MCU name not found in the capability table."""


class Cancelled(HalfkayError):
    r"""A polling wait was cancelled."""

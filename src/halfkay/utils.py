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

r"""Generic utility functions."""

import binascii
import re
import threading
import time
from typing import Any
from typing import Callable
from typing import Mapping
from typing import Optional
from typing import Union

from .errors import Cancelled

AnyBytes = Union[bytes, bytearray, memoryview]

SUFFIX_SCALE: Mapping[str, int] = {
    'k': 2**10,
    'm': 2**20,
    'g': 2**30,

    'kib': 2**10,
    'mib': 2**20,
    'gib': 2**30,

    'kb': 10**3,
    'mb': 10**6,
    'gb': 10**9,
}
r"""Integer suffix to scale factor."""

INT_REGEX = re.compile(r'^\s*(?P<sign>[+-]?)\s*'
                       r'(?P<prefix>(0x|0b|0o|0)?)'
                       r'(?P<value>[a-f0-9]+)'
                       r'(?P<suffix>h?)'
                       r'\s*(?P<scale>('
                       r'k|m|g|'
                       r'kib|mib|gib|'
                       r'kb|mb|gb'
                       r')?)\s*$')

SleepFunc = Callable[[float], Any]


def hexlify(
    bytestr: AnyBytes,
    upper: bool = True,
) -> bytes:
    r"""Converts raw bytes into a hexadecimal byte string.

    Args:
        bytestr (bytes):
            Source byte string.

        upper (bool):
            Uppercase hexadecimal string.

    Returns:
        bytes: Hexadecimal byte string.

    Examples:
        >>> from halfkay.utils import hexlify
        >>> hexlify(b'\xAA\xBB\xCC')
        b'AABBCC'
        >>> hexlify(b'\xAA\xBB\xCC', upper=False)
        b'aabbcc'
    """

    hexstr = binascii.hexlify(bytestr)
    if upper:
        hexstr = hexstr.upper()
    return hexstr


def unhexlify(hexstr: AnyBytes) -> bytes:
    r"""Converts a hexadecimal byte string into raw bytes.

    Args:
        hexstr (bytes):
            Source hexadecimal byte string.

    Returns:
        bytes: Raw byte string.

    Raises:
        :class:`binascii.Error`: Odd length or non-hexadecimal digits
            (subclass of :class:`ValueError`).

    Examples:
        >>> from halfkay.utils import unhexlify
        >>> unhexlify(b'AABBCC')
        b'\xaa\xbb\xcc'
    """

    bytestr = binascii.unhexlify(hexstr)
    return bytestr


def parse_int(
    value: Union[str, Any],
) -> Optional[int]:
    r"""Parses an integer.

    Args:
        value:
            A generic object to convert to integer.
            In case `value` is a :obj:`str` (case-insensitive), it can be
            either prefixed with ``0x`` or postfixed with ``h`` to convert
            from a hexadecimal representation, or prefixed with ``0b`` from
            binary; a prefix of only ``0`` converts from octal.
            A further suffix applies a scale factor as per
            :data:`SUFFIX_SCALE`.
            A ``None`` value evaluates as ``None``.
            Any other object class will call the standard :func:`int`.

    Returns:
        int: None if `value` is ``None``, its integer conversion otherwise.

    Examples:
        >>> parse_int('0x1F000')
        126976

        >>> parse_int('124k')
        126976

        >>> parse_int(None) is None
        True
    """
    if value is None:
        return None

    elif isinstance(value, str):
        value = value.lower()
        m = INT_REGEX.match(value)
        if not m:
            raise ValueError(f'invalid syntax: {value!r}')
        g = m.groupdict()
        sign = g['sign']
        prefix = g['prefix']
        value = g['value']
        suffix = g['suffix']
        scale = g['scale']
        if prefix in ('0b', '0o') and suffix == 'h':
            raise ValueError(f'invalid syntax: {value!r}')

        if prefix == '0x' or suffix == 'h':
            i = int(value, 16)
        elif prefix == '0b':
            i = int(value, 2)
        elif prefix == '0' or prefix == '0o':
            i = int(value, 8)
        else:
            i = int(value, 10)

        i *= SUFFIX_SCALE.get((scale or '').lower(), 1)

        if sign == '-':
            i = -i

        return i

    else:
        return int(value)


def pause(
    interval: float,
    cancel: Optional[threading.Event] = None,
    sleep: SleepFunc = time.sleep,
) -> None:
    r"""Waits for some time, unless cancelled.

    When a `cancel` token is given, the wait is performed on it, so that
    another thread (or a signal handler) can interrupt it by setting the
    token.

    Args:
        interval (float):
            Time to wait, in seconds.

        cancel (:class:`threading.Event`):
            Optional cancellation token.

        sleep (callable):
            Sleep function, used when no `cancel` token is given.

    Raises:
        :class:`halfkay.errors.Cancelled`: The token was set.
    """

    if cancel is None:
        sleep(interval)
    elif cancel.wait(interval):
        raise Cancelled('wait cancelled')


def retry(
    attempt: Callable[[float], bool],
    budget: float,
    interval: float,
    cancel: Optional[threading.Event] = None,
    sleep: SleepFunc = time.sleep,
) -> bool:
    r"""Retries an attempt within a time budget.

    The `attempt` callable receives the remaining budget, in seconds, and
    returns true on success.
    After each failure, it waits for `interval` and charges it to the budget.
    The time spent inside `attempt` itself is not charged.

    Args:
        attempt (callable):
            Attempt function.

        budget (float):
            Total time budget, in seconds.

        interval (float):
            Wait between attempts, in seconds.

        cancel (:class:`threading.Event`):
            Optional cancellation token.

        sleep (callable):
            Sleep function, used when no `cancel` token is given.

    Returns:
        bool: An attempt succeeded before the budget was exhausted.

    Examples:
        >>> retry(lambda remaining: True, 0.5, 0.01)
        True
        >>> retry(lambda remaining: False, 0.0, 0.01)
        False
    """

    remaining = budget
    while remaining > 0:
        if attempt(remaining):
            return True
        pause(interval, cancel=cancel, sleep=sleep)
        remaining = round(remaining - interval, 6)
    return False

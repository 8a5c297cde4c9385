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

r"""MCU capability table."""

from typing import Mapping
from typing import NamedTuple

from .errors import UnknownMcu


class McuProfile(NamedTuple):
    r"""Flash geometry of an MCU."""

    code_size: int
    r"""Flash size available to the application, in bytes."""

    block_size: int
    r"""Write block size, in bytes."""


MCUS: Mapping[str, McuProfile] = {
    # Raw chip names
    'at90usb162': McuProfile(15872, 128),
    'atmega32u4': McuProfile(32256, 128),
    'at90usb646': McuProfile(64512, 256),
    'at90usb1286': McuProfile(130048, 256),
    'mkl26z64': McuProfile(63488, 512),
    'mk20dx128': McuProfile(131072, 1024),
    'mk20dx256': McuProfile(262144, 1024),
    'mk66fx1m0': McuProfile(1048576, 1024),
    'mk64fx512': McuProfile(524288, 1024),
    'imxrt1062': McuProfile(2031616, 1024),

    # Board names
    'TEENSY2': McuProfile(32256, 128),
    'TEENSY2PP': McuProfile(130048, 256),
    'TEENSYLC': McuProfile(63488, 512),
    'TEENSY30': McuProfile(131072, 1024),
    'TEENSY31': McuProfile(262144, 1024),
    'TEENSY32': McuProfile(262144, 1024),
    'TEENSY35': McuProfile(524288, 1024),
    'TEENSY36': McuProfile(1048576, 1024),
    'TEENSY40': McuProfile(2031616, 1024),
    'TEENSY41': McuProfile(8126464, 1024),
    'TEENSY_MICROMOD': McuProfile(16515072, 1024),
}
r"""Known MCUs, by chip or board name."""


def find_mcu(name: str) -> McuProfile:
    r"""Looks up an MCU by name, case-insensitively.

    Args:
        name (str):
            Chip or board name.

    Returns:
        :class:`McuProfile`: MCU geometry.

    Raises:
        :class:`halfkay.errors.UnknownMcu`: Name not found.

    Examples:
        >>> find_mcu('teensy40')
        McuProfile(code_size=2031616, block_size=1024)
    """

    folded = name.casefold()
    for key, profile in MCUS.items():
        if key.casefold() == folded:
            return profile
    raise UnknownMcu(f'unknown mcu type {name!r}')

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

r"""Firmware loading state machine.

Ties together the Intel HEX loader, the block planner and the bootloader
device: waits for the device (rebooting the board into the bootloader if
asked to), programs the planned blocks, and finally boots the new firmware.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .blocks import BOOT_TIMEOUT
from .blocks import boot_payload
from .blocks import plan_blocks
from .blocks import write_size
from .device import DeviceSession
from .device import RebootController
from .errors import ConfigurationError
from .errors import DeviceNotFound
from .errors import HalfkayError
from .errors import WriteTimeout
from .ihex import FirmwareImage
from .ihex import IhexLoader
from .mcus import McuProfile
from .utils import SleepFunc
from .utils import pause

_logger = logging.getLogger(__name__)

POLL_INTERVAL: float = 0.25
r"""Wait between device discovery attempts, in seconds."""


class LoaderState(enum.Enum):
    r"""Loader state."""

    SEARCHING = 'searching'
    REBOOT_ATTEMPT = 'reboot_attempt'
    WAITING = 'waiting'
    FOUND = 'found'
    PROGRAMMING = 'programming'
    BOOTING = 'booting'
    DONE = 'done'
    FATAL = 'fatal'


@dataclass(frozen=True)
class LoaderOptions:
    r"""Run options."""

    wait: bool = False
    r"""Wait for the device to appear."""

    hard_reboot: bool = False
    r"""Use the rebootor if the device is not online."""

    soft_reboot: bool = False
    r"""Use the serial soft reboot if the device is not online."""

    reboot_after: bool = True
    r"""Boot the new firmware after programming."""

    boot_only: bool = False
    r"""Boot the current firmware without programming."""


class Loader:
    r"""Firmware loader.

    Args:
        profile (:class:`halfkay.mcus.McuProfile`):
            Target MCU geometry.

        path (str):
            Intel HEX file path; not needed when booting only.

        options (:class:`LoaderOptions`):
            Run options.

        session (:class:`halfkay.device.DeviceSession`):
            Bootloader session.

        rebooter (:class:`halfkay.device.RebootController`):
            Reboot side channels.

        cancel (:class:`threading.Event`):
            Optional cancellation token for the device discovery wait.

        sleep (callable):
            Sleep function for the device discovery wait.

    Raises:
        :class:`halfkay.errors.ConfigurationError`: Missing file or MCU.
        :class:`halfkay.errors.UnsupportedGeometry`: Unknown geometry.
    """

    def __init__(
        self,
        profile: McuProfile,
        path: Optional[str] = None,
        options: Optional[LoaderOptions] = None,
        session: Optional[DeviceSession] = None,
        rebooter: Optional[RebootController] = None,
        cancel: Optional[threading.Event] = None,
        sleep: SleepFunc = time.sleep,
    ):

        if options is None:
            options = LoaderOptions()

        if not path and not options.boot_only:
            raise ConfigurationError('filename must be specified')

        if not profile.code_size or not profile.block_size:
            raise ConfigurationError('mcu type must be specified')

        write_size(profile.code_size, profile.block_size)  # check geometry

        if session is None:
            session = DeviceSession(cancel=cancel)

        if rebooter is None:
            rebooter = RebootController(session.backend)

        self.profile: McuProfile = profile
        self.path: Optional[str] = path
        self.options: LoaderOptions = options
        self.session: DeviceSession = session
        self.rebooter: RebootController = rebooter
        self.cancel: Optional[threading.Event] = cancel
        self.sleep: SleepFunc = sleep
        self.state: LoaderState = LoaderState.SEARCHING
        self.blocks_written: int = 0

    def load(self) -> FirmwareImage:
        r"""Loads the firmware file.

        Returns:
            :class:`halfkay.ihex.FirmwareImage`: Freshly loaded image.
        """

        code_size, block_size = self.profile
        byte_count, image = IhexLoader(code_size, block_size).load(self.path)
        _logger.info('read %r: %d bytes, %.1f%% usage',
                     self.path, byte_count, byte_count / code_size * 100.0)
        return image

    def wait_for_device(self) -> bool:
        r"""Opens the bootloader device, waiting for it if allowed.

        Each requested reboot side channel is tried once; trying one implies
        waiting for the device.

        Returns:
            bool: Some waiting was needed.

        Raises:
            :class:`halfkay.errors.DeviceNotFound`: Device not available and
                no way to wait for it.
            :class:`halfkay.errors.Cancelled`: The wait was cancelled.
        """

        options = self.options
        wait = options.wait
        hard_reboot = options.hard_reboot
        soft_reboot = options.soft_reboot
        waited = False

        while True:
            self.state = LoaderState.SEARCHING
            if self.session.open():
                break

            if hard_reboot:
                self.state = LoaderState.REBOOT_ATTEMPT
                if not self.rebooter.hard_reboot():
                    raise DeviceNotFound('unable to find rebootor')
                _logger.info('hard reboot performed')
                hard_reboot = False
                wait = True

            if soft_reboot:
                self.state = LoaderState.REBOOT_ATTEMPT
                if self.rebooter.soft_reboot():
                    _logger.info('soft reboot performed')
                soft_reboot = False
                wait = True

            if not wait:
                raise DeviceNotFound('unable to open device (try the wait option)')

            self.state = LoaderState.WAITING
            if not waited:
                _logger.info('waiting for the device... (try pressing the reset button)')
                waited = True

            pause(POLL_INTERVAL, cancel=self.cancel, sleep=self.sleep)

        self.state = LoaderState.FOUND
        _logger.info('found HalfKay bootloader')
        return waited

    def program(self, image: FirmwareImage) -> int:
        r"""Writes the planned blocks of an image.

        Returns:
            int: Number of blocks written.

        Raises:
            :class:`halfkay.errors.WriteTimeout`: A block was not accepted.
        """

        self.state = LoaderState.PROGRAMMING
        _logger.info('programming...')
        code_size, block_size = self.profile
        count = 0

        for block in plan_blocks(image, code_size, block_size):
            _logger.debug('writing block at 0x%06X', block.address)
            if not self.session.write(block.to_bytes(), block.timeout):
                raise WriteTimeout(f'error writing block at 0x{block.address:06X}')
            count += 1

        self.blocks_written = count
        return count

    def boot(self) -> bool:
        r"""Makes the bootloader jump to the application.

        Returns:
            bool: The boot command was accepted.
        """

        self.state = LoaderState.BOOTING
        _logger.info('booting...')
        payload = boot_payload(self.profile.code_size, self.profile.block_size)
        accepted = self.session.write(payload, BOOT_TIMEOUT)
        if not accepted:
            _logger.warning('boot command not acknowledged')
        return accepted

    def run(self) -> None:
        r"""Runs the whole loading sequence.

        The file is loaded before touching any USB device, and loaded again
        if waiting for the device was needed, as it may have changed.

        Raises:
            :class:`halfkay.errors.HalfkayError`: Fatal condition.
        """

        try:
            image = None
            if not self.options.boot_only:
                image = self.load()

            waited = self.wait_for_device()

            if self.options.boot_only:
                self.boot()
            else:
                if waited:
                    image = self.load()

                self.program(image)

                if self.options.reboot_after:
                    self.boot()

            self.state = LoaderState.DONE

        except HalfkayError:
            self.state = LoaderState.FATAL
            raise

        finally:
            self.session.close()

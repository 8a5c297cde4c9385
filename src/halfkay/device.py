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

r"""HalfKay bootloader device access.

Protocol constants are fixed by the bootloader and by the companion devices.
"""

import logging
import threading
import time
from typing import Any
from typing import Optional

from .errors import DeviceBusy
from .errors import UsbError
from .transport import PyUsbBackend
from .transport import UsbBackend
from .utils import AnyBytes
from .utils import SleepFunc
from .utils import retry

_logger = logging.getLogger(__name__)

VENDOR_ID: int = 0x16C0
r"""Vendor ID shared by all the devices."""

HALFKAY_PRODUCT_ID: int = 0x0478
r"""Product ID of the HalfKay bootloader."""

REBOOTOR_PRODUCT_ID: int = 0x0477
r"""Product ID of the rebootor companion board."""

SERIAL_PRODUCT_ID: int = 0x0483
r"""Product ID of the USB serial interface of a running board."""

HID_REQUEST_TYPE: int = 0x21
r"""Host to device, class request, to interface."""

HID_SET_REPORT: int = 0x09
HID_REPORT_VALUE: int = 0x0200  # output report, ID 0

CDC_SET_LINE_CODING: int = 0x20

REBOOT_COMMAND: bytes = b'reboot'
r"""Rebootor command."""

REBOOT_TIMEOUT: float = 0.1

SOFT_REBOOT_COMMAND: bytes = bytes([0x86, 0x00, 0x00, 0x00, 0x00, 0x00, 0x08])
r"""Line coding at 134 baud, 8 data bits: the "enter bootloader" signal."""

SOFT_REBOOT_TIMEOUT: float = 10.0

WRITE_RETRY_INTERVAL: float = 0.01
r"""Wait between write attempts, in seconds."""


def open_usb_device(
    backend: UsbBackend,
    vendor_id: int,
    product_id: int,
) -> Optional[Any]:
    r"""Opens the first usable device with the given identity.

    A device whose interface is claimed by a kernel driver is detached from
    it; if that fails, the device is skipped.

    Args:
        backend (:class:`halfkay.transport.UsbBackend`):
            USB backend.

        vendor_id (int):
            Vendor ID.

        product_id (int):
            Product ID.

    Returns:
        Device handle, or ``None`` if no device could be opened.

    Raises:
        :class:`halfkay.errors.UsbError`: Enumeration failed.
    """

    for device in backend.find(vendor_id, product_id):
        try:
            handle = backend.open(device)
        except UsbError as exc:
            _logger.info('found device but unable to open: %s', exc)
            continue

        try:
            _take_interface(backend, handle)
        except DeviceBusy as exc:
            backend.close(handle)
            _logger.info('%s', exc)
            continue

        return handle
    return None


def _take_interface(backend: UsbBackend, handle: Any) -> None:

    try:
        if backend.kernel_driver_active(handle, 0):
            backend.detach_kernel_driver(handle, 0)
    except UsbError as exc:
        raise DeviceBusy(f'device is in use by another driver: {exc}') from exc


class DeviceSession:
    r"""Connection to the HalfKay bootloader.

    At most one device handle is held at any time.

    Args:
        backend (:class:`halfkay.transport.UsbBackend`):
            USB backend; :class:`halfkay.transport.PyUsbBackend` if ``None``.

        cancel (:class:`threading.Event`):
            Optional cancellation token for write retries.

        sleep (callable):
            Sleep function between write retries.
    """

    def __init__(
        self,
        backend: Optional[UsbBackend] = None,
        cancel: Optional[threading.Event] = None,
        sleep: SleepFunc = time.sleep,
    ):

        if backend is None:
            backend = PyUsbBackend()

        self.backend: UsbBackend = backend
        self.cancel: Optional[threading.Event] = cancel
        self.sleep: SleepFunc = sleep
        self._handle: Optional[Any] = None

    def __enter__(self) -> 'DeviceSession':

        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:

        self.close()

    @property
    def is_open(self) -> bool:

        return self._handle is not None

    def open(self) -> bool:
        r"""Opens the bootloader device.

        Any previously held handle is closed first.

        Returns:
            bool: A bootloader device was opened.
        """

        self.close()
        self._handle = open_usb_device(self.backend, VENDOR_ID, HALFKAY_PRODUCT_ID)
        return self._handle is not None

    def write(self, buffer: AnyBytes, timeout: float) -> bool:
        r"""Writes a buffer, retrying while the device is busy.

        Failed attempts are retried every :data:`WRITE_RETRY_INTERVAL`,
        which is charged to the `timeout` budget.

        Args:
            buffer (bytes):
                Data to send.

            timeout (float):
                Time budget, in seconds.

        Returns:
            bool: The buffer was accepted within the budget.
        """

        handle = self._handle
        if handle is None:
            return False

        def attempt(remaining: float) -> bool:
            try:
                self.backend.control_transfer(handle, HID_REQUEST_TYPE, HID_SET_REPORT,
                                              HID_REPORT_VALUE, 0, buffer, remaining)
                return True
            except UsbError as exc:
                _logger.debug('write attempt failed: %s', exc)
                return False

        return retry(attempt, timeout, WRITE_RETRY_INTERVAL,
                     cancel=self.cancel, sleep=self.sleep)

    def close(self) -> None:
        r"""Releases the device handle, if any."""

        handle = self._handle
        if handle is None:
            return

        self._handle = None
        self.backend.release(handle, 0)
        self.backend.close(handle)


class RebootController:
    r"""Coaxes a running board into the bootloader.

    Both operations are best-effort: they report failure as ``False`` and
    never raise.

    Args:
        backend (:class:`halfkay.transport.UsbBackend`):
            USB backend; :class:`halfkay.transport.PyUsbBackend` if ``None``.
    """

    def __init__(self, backend: Optional[UsbBackend] = None):

        if backend is None:
            backend = PyUsbBackend()
        self.backend: UsbBackend = backend

    def _send(
        self,
        product_id: int,
        request: int,
        value: int,
        data: bytes,
        timeout: float,
    ) -> bool:

        backend = self.backend
        try:
            handle = open_usb_device(backend, VENDOR_ID, product_id)
        except UsbError as exc:
            _logger.info('error opening usb device: %s', exc)
            return False

        if handle is None:
            _logger.info('usb device %04X:%04X not found', VENDOR_ID, product_id)
            return False

        try:
            backend.control_transfer(handle, HID_REQUEST_TYPE, request, value, 0, data, timeout)
            return True
        except UsbError as exc:
            _logger.info('usb transfer failed: %s', exc)
            return False
        finally:
            backend.release(handle, 0)
            backend.close(handle)

    def hard_reboot(self) -> bool:
        r"""Asks the rebootor board to reset the target.

        Returns:
            bool: The command was sent.
        """

        return self._send(REBOOTOR_PRODUCT_ID, HID_SET_REPORT, HID_REPORT_VALUE,
                          REBOOT_COMMAND, REBOOT_TIMEOUT)

    def soft_reboot(self) -> bool:
        r"""Asks the running firmware to jump into the bootloader.

        Only boards exposing a USB serial interface support this.

        Returns:
            bool: The command was sent.
        """

        return self._send(SERIAL_PRODUCT_ID, CDC_SET_LINE_CODING, 0,
                          SOFT_REBOOT_COMMAND, SOFT_REBOOT_TIMEOUT)

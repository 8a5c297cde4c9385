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

r"""USB transport primitives.

The flashing logic only needs a handful of USB operations: enumerate devices
by identity, open them, take them from kernel drivers, send control transfers
and release them.
These are collected by :class:`UsbBackend`, so that the logic can run against
any implementation; :class:`PyUsbBackend` is the default one, built on
`PyUSB <https://pyusb.github.io/pyusb/>`_.
"""

import abc
import logging
from typing import Any
from typing import List

import usb.core
import usb.util

from .errors import UsbError
from .utils import AnyBytes

_logger = logging.getLogger(__name__)


class UsbBackend(abc.ABC):
    r"""Abstract USB control endpoint capability.

    Any failing operation raises :class:`halfkay.errors.UsbError`.
    """

    @abc.abstractmethod
    def find(self, vendor_id: int, product_id: int) -> List[Any]:
        r"""Lists the attached devices matching an identity."""
        ...

    @abc.abstractmethod
    def open(self, device: Any) -> Any:
        r"""Opens a device, returning its handle."""
        ...

    @abc.abstractmethod
    def kernel_driver_active(self, handle: Any, interface: int = 0) -> bool:
        ...

    @abc.abstractmethod
    def detach_kernel_driver(self, handle: Any, interface: int = 0) -> None:
        ...

    @abc.abstractmethod
    def control_transfer(
        self,
        handle: Any,
        request_type: int,
        request: int,
        value: int,
        index: int,
        data: AnyBytes,
        timeout: float,
    ) -> int:
        r"""Sends a host-to-device control transfer.

        Args:
            handle:
                Device handle.

            request_type (int):
                ``bmRequestType`` field.

            request (int):
                ``bRequest`` field.

            value (int):
                ``wValue`` field.

            index (int):
                ``wIndex`` field.

            data (bytes):
                Data stage payload.

            timeout (float):
                Timeout, in seconds.

        Returns:
            int: Number of bytes transferred.
        """
        ...

    @abc.abstractmethod
    def release(self, handle: Any, interface: int = 0) -> None:
        ...

    @abc.abstractmethod
    def close(self, handle: Any) -> None:
        ...


class PyUsbBackend(UsbBackend):
    r"""PyUSB backend."""

    def find(self, vendor_id: int, product_id: int) -> List[Any]:

        try:
            devices = usb.core.find(find_all=True, idVendor=vendor_id, idProduct=product_id)
            return list(devices)
        except usb.core.NoBackendError as exc:
            raise UsbError(f'no USB backend available: {exc}') from exc
        except usb.core.USBError as exc:
            raise UsbError(f'unable to enumerate USB devices: {exc}') from exc

    def open(self, device: Any) -> Any:

        # PyUSB opens devices lazily; touching the active configuration
        # forces the actual open.
        try:
            device.get_active_configuration()
        except usb.core.USBError as exc:
            raise UsbError(str(exc)) from exc
        return device

    def kernel_driver_active(self, handle: Any, interface: int = 0) -> bool:

        try:
            return bool(handle.is_kernel_driver_active(interface))
        except NotImplementedError:
            return False  # not supported by the platform backend
        except usb.core.USBError as exc:
            raise UsbError(str(exc)) from exc

    def detach_kernel_driver(self, handle: Any, interface: int = 0) -> None:

        try:
            handle.detach_kernel_driver(interface)
        except usb.core.USBError as exc:
            raise UsbError(str(exc)) from exc

    def control_transfer(
        self,
        handle: Any,
        request_type: int,
        request: int,
        value: int,
        index: int,
        data: AnyBytes,
        timeout: float,
    ) -> int:

        timeout_ms = max(1, int(timeout * 1000))
        try:
            return handle.ctrl_transfer(request_type, request, value, index, data, timeout=timeout_ms)
        except usb.core.USBError as exc:
            raise UsbError(str(exc)) from exc

    def release(self, handle: Any, interface: int = 0) -> None:

        try:
            usb.util.release_interface(handle, interface)
        except usb.core.USBError as exc:
            _logger.debug('unable to release interface %d: %s', interface, exc)

    def close(self, handle: Any) -> None:

        usb.util.dispose_resources(handle)

from collections import Counter
from typing import Any
from typing import List

from halfkay.errors import UsbError
from halfkay.transport import UsbBackend


class FakeDevice:

    def __init__(
        self,
        vendor_id: int = 0x16C0,
        product_id: int = 0x0478,
        appear_after: int = 0,
        kernel_driver: bool = False,
        detach_fails: bool = False,
        open_fails: bool = False,
        failures: int = 0,
        always_fail: bool = False,
    ):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.appear_after = appear_after
        self.kernel_driver = kernel_driver
        self.detach_fails = detach_fails
        self.open_fails = open_fails
        self.failures = failures
        self.always_fail = always_fail
        self.transfers: List[tuple] = []
        self.released = 0
        self.closed = 0

    @property
    def payloads(self) -> List[bytes]:
        return [transfer[4] for transfer in self.transfers]


class FakeBackend(UsbBackend):

    def __init__(self, *devices: FakeDevice, find_error: bool = False):
        self.devices = list(devices)
        self.find_error = find_error
        self.find_calls = Counter()
        self.attempts = 0

    def find(self, vendor_id: int, product_id: int) -> List[Any]:
        if self.find_error:
            raise UsbError('no USB backend available')

        key = (vendor_id, product_id)
        self.find_calls[key] += 1
        calls = self.find_calls[key]
        return [device for device in self.devices
                if (device.vendor_id, device.product_id) == key
                and calls > device.appear_after]

    def open(self, device: FakeDevice) -> Any:
        if device.open_fails:
            raise UsbError('access denied')
        return device

    def kernel_driver_active(self, handle: FakeDevice, interface: int = 0) -> bool:
        return handle.kernel_driver

    def detach_kernel_driver(self, handle: FakeDevice, interface: int = 0) -> None:
        if handle.detach_fails:
            raise UsbError('resource busy')
        handle.kernel_driver = False

    def control_transfer(self, handle, request_type, request, value, index, data, timeout):
        self.attempts += 1
        if handle.always_fail:
            raise UsbError('pipe error')
        if handle.failures > 0:
            handle.failures -= 1
            raise UsbError('pipe error')
        handle.transfers.append((request_type, request, value, index, bytes(data), timeout))
        return len(data)

    def release(self, handle: FakeDevice, interface: int = 0) -> None:
        handle.released += 1

    def close(self, handle: FakeDevice) -> None:
        handle.closed += 1

import pytest
import usb.core
import usb.util

from halfkay.errors import UsbError
from halfkay.transport import PyUsbBackend
from halfkay.transport import UsbBackend


class MockPyUsbDevice:

    def __init__(self, configured=True, kernel_driver=None, transfer_error=False):
        self.configured = configured
        self.kernel_driver = kernel_driver
        self.transfer_error = transfer_error
        self.detached = []
        self.transfers = []

    def get_active_configuration(self):
        if not self.configured:
            raise usb.core.USBError('Access denied (insufficient permissions)')
        return object()

    def is_kernel_driver_active(self, interface):
        if self.kernel_driver is None:
            raise NotImplementedError('is_kernel_driver_active')
        return self.kernel_driver

    def detach_kernel_driver(self, interface):
        if self.kernel_driver == 'stuck':
            raise usb.core.USBError('Resource busy')
        self.detached.append(interface)

    def ctrl_transfer(self, bmRequestType, bRequest, wValue, wIndex, data_or_wLength, timeout=None):
        if self.transfer_error:
            raise usb.core.USBError('Pipe error')
        self.transfers.append((bmRequestType, bRequest, wValue, wIndex,
                               bytes(data_or_wLength), timeout))
        return len(data_or_wLength)


@pytest.fixture
def backend():
    return PyUsbBackend()


def test_abstract():
    with pytest.raises(TypeError):
        UsbBackend()


def test_find(monkeypatch, backend):
    devices = [MockPyUsbDevice(), MockPyUsbDevice()]
    calls = []

    def find(**kwargs):
        calls.append(kwargs)
        return iter(devices)

    monkeypatch.setattr(usb.core, 'find', find)
    assert backend.find(0x16C0, 0x0478) == devices
    assert calls == [dict(find_all=True, idVendor=0x16C0, idProduct=0x0478)]


def test_find_raises(monkeypatch, backend):

    def find_no_backend(**kwargs):
        raise usb.core.NoBackendError('No backend available')

    monkeypatch.setattr(usb.core, 'find', find_no_backend)
    with pytest.raises(UsbError, match='no USB backend available'):
        backend.find(0x16C0, 0x0478)

    def find_error(**kwargs):
        raise usb.core.USBError('Other error')

    monkeypatch.setattr(usb.core, 'find', find_error)
    with pytest.raises(UsbError, match='unable to enumerate'):
        backend.find(0x16C0, 0x0478)


def test_open(backend):
    device = MockPyUsbDevice()
    assert backend.open(device) is device

    with pytest.raises(UsbError, match='Access denied'):
        backend.open(MockPyUsbDevice(configured=False))


def test_kernel_driver(backend):
    assert backend.kernel_driver_active(MockPyUsbDevice(kernel_driver=True)) is True
    assert backend.kernel_driver_active(MockPyUsbDevice(kernel_driver=False)) is False
    assert backend.kernel_driver_active(MockPyUsbDevice(kernel_driver=None)) is False

    device = MockPyUsbDevice(kernel_driver=True)
    backend.detach_kernel_driver(device, 0)
    assert device.detached == [0]

    with pytest.raises(UsbError, match='Resource busy'):
        backend.detach_kernel_driver(MockPyUsbDevice(kernel_driver='stuck'), 0)


def test_control_transfer(backend):
    device = MockPyUsbDevice()
    assert backend.control_transfer(device, 0x21, 0x09, 0x0200, 0, b'reboot', 0.1) == 6
    assert device.transfers == [(0x21, 0x09, 0x0200, 0, b'reboot', 100)]

    backend.control_transfer(device, 0x21, 0x09, 0x0200, 0, b'x', 0.0001)
    assert device.transfers[-1][5] == 1

    with pytest.raises(UsbError, match='Pipe error'):
        backend.control_transfer(MockPyUsbDevice(transfer_error=True),
                                 0x21, 0x09, 0x0200, 0, b'x', 0.5)


def test_release_close(monkeypatch, backend):
    released = []
    disposed = []

    def release_interface(device, interface):
        released.append((device, interface))
        raise usb.core.USBError('Entity not found')

    monkeypatch.setattr(usb.util, 'release_interface', release_interface)
    monkeypatch.setattr(usb.util, 'dispose_resources', disposed.append)

    device = MockPyUsbDevice()
    backend.release(device, 0)
    backend.close(device)
    assert released == [(device, 0)]
    assert disposed == [device]

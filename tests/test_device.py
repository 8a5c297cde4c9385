import logging

from fakeusb import FakeBackend
from fakeusb import FakeDevice

from halfkay.device import HALFKAY_PRODUCT_ID
from halfkay.device import REBOOTOR_PRODUCT_ID
from halfkay.device import SERIAL_PRODUCT_ID
from halfkay.device import VENDOR_ID
from halfkay.device import DeviceSession
from halfkay.device import RebootController
from halfkay.device import open_usb_device


def make_session(*devices):
    sleeps = []
    backend = FakeBackend(*devices)
    session = DeviceSession(backend, sleep=sleeps.append)
    return session, backend, sleeps


def test_open_usb_device_none():
    backend = FakeBackend()
    assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is None


def test_open_usb_device_identity():
    other = FakeDevice(product_id=SERIAL_PRODUCT_ID)
    target = FakeDevice()
    backend = FakeBackend(other, target)
    assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is target
    assert open_usb_device(backend, VENDOR_ID, SERIAL_PRODUCT_ID) is other
    assert open_usb_device(backend, 0x1234, HALFKAY_PRODUCT_ID) is None


def test_open_usb_device_detach():
    device = FakeDevice(kernel_driver=True)
    backend = FakeBackend(device)
    assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is device
    assert device.kernel_driver is False
    assert device.closed == 0


def test_open_usb_device_busy(caplog):
    busy = FakeDevice(kernel_driver=True, detach_fails=True)
    free = FakeDevice()
    backend = FakeBackend(busy, free)
    with caplog.at_level(logging.INFO, logger='halfkay.device'):
        assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is free
    assert busy.closed == 1
    assert 'in use by another driver' in caplog.text


def test_open_usb_device_unopenable():
    locked = FakeDevice(open_fails=True)
    backend = FakeBackend(locked)
    assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is None

    free = FakeDevice()
    backend = FakeBackend(locked, free)
    assert open_usb_device(backend, VENDOR_ID, HALFKAY_PRODUCT_ID) is free


class TestDeviceSession:

    def test_open_missing(self):
        session, backend, _ = make_session()
        assert session.open() is False
        assert session.is_open is False

    def test_open(self):
        device = FakeDevice()
        session, backend, _ = make_session(device)
        assert session.open() is True
        assert session.is_open is True

    def test_open_twice_closes(self):
        device = FakeDevice()
        session, backend, _ = make_session(device)
        assert session.open() is True
        assert session.open() is True
        assert device.released == 1
        assert device.closed == 1

    def test_write_without_handle(self):
        session, backend, sleeps = make_session(FakeDevice())
        assert session.write(b'data', 0.5) is False
        assert backend.attempts == 0
        assert sleeps == []

    def test_write(self):
        device = FakeDevice()
        session, backend, sleeps = make_session(device)
        session.open()
        assert session.write(b'\x00\x00' + bytes(128), 5.0) is True
        assert sleeps == []
        request_type, request, value, index, data, timeout = device.transfers[0]
        assert (request_type, request, value, index) == (0x21, 0x09, 0x0200, 0)
        assert data == b'\x00\x00' + bytes(128)
        assert timeout == 5.0

    def test_write_retries(self):
        device = FakeDevice(failures=3)
        session, backend, sleeps = make_session(device)
        session.open()
        assert session.write(b'data', 0.5) is True
        assert backend.attempts == 4
        assert sleeps == [0.01] * 3
        assert device.transfers[0][5] == 0.47

    def test_write_timeout(self):
        device = FakeDevice(always_fail=True)
        session, backend, sleeps = make_session(device)
        session.open()
        assert session.write(b'data', 0.05) is False
        assert backend.attempts == 5
        assert sleeps == [0.01] * 5
        assert device.transfers == []

    def test_write_first_block_budget(self):
        device = FakeDevice(always_fail=True)
        session, backend, sleeps = make_session(device)
        session.open()
        assert session.write(b'data', 5.0) is False
        assert backend.attempts == 500

    def test_close(self):
        device = FakeDevice()
        session, backend, _ = make_session(device)
        session.close()
        assert device.released == 0

        session.open()
        session.close()
        session.close()
        assert session.is_open is False
        assert device.released == 1
        assert device.closed == 1
        assert session.write(b'data', 0.5) is False

    def test_context_manager(self):
        device = FakeDevice()
        backend = FakeBackend(device)
        with DeviceSession(backend) as session:
            assert session.open() is True
        assert device.closed == 1


class TestRebootController:

    def test_hard_reboot(self):
        rebootor = FakeDevice(product_id=REBOOTOR_PRODUCT_ID)
        controller = RebootController(FakeBackend(rebootor))
        assert controller.hard_reboot() is True
        assert rebootor.transfers == [(0x21, 0x09, 0x0200, 0, b'reboot', 0.1)]
        assert rebootor.released == 1
        assert rebootor.closed == 1

    def test_hard_reboot_missing(self):
        target = FakeDevice()
        controller = RebootController(FakeBackend(target))
        assert controller.hard_reboot() is False
        assert target.transfers == []

    def test_hard_reboot_transfer_fails(self):
        rebootor = FakeDevice(product_id=REBOOTOR_PRODUCT_ID, always_fail=True)
        controller = RebootController(FakeBackend(rebootor))
        assert controller.hard_reboot() is False
        assert rebootor.released == 1
        assert rebootor.closed == 1

    def test_soft_reboot(self):
        serial = FakeDevice(product_id=SERIAL_PRODUCT_ID)
        controller = RebootController(FakeBackend(serial))
        assert controller.soft_reboot() is True
        command = b'\x86\x00\x00\x00\x00\x00\x08'
        assert serial.transfers == [(0x21, 0x20, 0, 0, command, 10.0)]
        assert serial.released == 1
        assert serial.closed == 1

    def test_soft_reboot_missing(self):
        controller = RebootController(FakeBackend())
        assert controller.soft_reboot() is False

    def test_soft_reboot_transfer_fails(self):
        serial = FakeDevice(product_id=SERIAL_PRODUCT_ID, always_fail=True)
        controller = RebootController(FakeBackend(serial))
        assert controller.soft_reboot() is False
        assert serial.released == 1
        assert serial.closed == 1

    def test_backend_error(self):
        controller = RebootController(FakeBackend(find_error=True))
        assert controller.hard_reboot() is False
        assert controller.soft_reboot() is False

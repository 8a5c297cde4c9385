import sys
from typing import cast as _cast

import pytest
from click.core import Command
from click.testing import CliRunner
from fakeusb import FakeBackend
from fakeusb import FakeDevice

from halfkay import __version__ as _version
from halfkay.__main__ import main as _main
from halfkay.cli import *
from halfkay.errors import ConfigurationError
from halfkay.errors import UnknownMcu
from halfkay.ihex import IhexRecord

main = _cast(Command, main)  # suppress warnings

BOOT_128 = b'\xFF\xFF\xFF' + bytes(127)


@pytest.fixture
def firmware(tmp_path):
    path = tmp_path / 'firmware.hex'
    path.write_bytes(IhexRecord.create_data(0x0000, b'\x0C\x94' * 8).to_bytestr() +
                     IhexRecord.create_end_of_file().to_bytestr())
    return str(path)


@pytest.fixture
def fake_usb(monkeypatch):
    backend = FakeBackend()
    monkeypatch.setattr('halfkay.device.PyUsbBackend', lambda: backend)
    return backend


def test_main(monkeypatch):
    monkeypatch.setattr(sys, 'argv', ['halfkay', '--version'])
    with pytest.raises(SystemExit) as excinfo:
        _main('__main__')
    assert excinfo.value.code == 0


def test_resolve_profile():
    assert resolve_profile('teensy2', None, None) == McuProfile(32256, 128)
    assert resolve_profile(None, 0x1F000, 256) == McuProfile(0x1F000, 256)

    with pytest.raises(ConfigurationError, match='mcu type must be specified'):
        resolve_profile(None, None, None)

    with pytest.raises(ConfigurationError, match='not both'):
        resolve_profile('teensy2', 32256, 128)

    with pytest.raises(ConfigurationError, match='both code size and block size'):
        resolve_profile(None, 32256, None)

    with pytest.raises(ConfigurationError, match='must be positive'):
        resolve_profile(None, 32256, 0)

    with pytest.raises(UnknownMcu):
        resolve_profile('teensy99', None, None)


def test_help():
    runner = CliRunner()
    result = runner.invoke(main, ['--help'])
    assert result.exit_code == 0
    assert result.output.strip().startswith('Usage:')
    assert '--wait' in result.output


def test_version():
    runner = CliRunner()
    result = runner.invoke(main, ['--version'])
    assert result.exit_code == 0
    assert result.output.strip() == _version


def test_list_mcus():
    runner = CliRunner()
    result = runner.invoke(main, ['--list-mcus'])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == 'supported mcus are:'
    assert ' - atmega32u4' in lines
    assert ' - TEENSY40' in lines


def test_missing_mcu(firmware):
    runner = CliRunner()
    result = runner.invoke(main, [firmware])
    assert result.exit_code == 1
    assert 'mcu type must be specified' in result.output


def test_unknown_mcu(firmware):
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu', 'teensy99', firmware])
    assert result.exit_code == 1
    assert "unknown mcu type 'teensy99'" in result.output


def test_missing_filename(fake_usb):
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2'])
    assert result.exit_code == 1
    assert 'filename must be specified' in result.output


def test_missing_file(tmp_path, fake_usb):
    runner = CliRunner()
    path = str(tmp_path / 'missing.hex')
    result = runner.invoke(main, ['--mcu=TEENSY2', path])
    assert result.exit_code == 1
    assert 'unable to open file' in result.output
    assert not fake_usb.find_calls


def test_parse_error(tmp_path, fake_usb):
    path = tmp_path / 'bad.hex'
    path.write_bytes(b':00000001FF\n'.replace(b'FF', b'FE'))
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2', str(path)])
    assert result.exit_code == 1
    assert 'line 1: checksum mismatch' in result.output


def test_invalid_integer(firmware):
    runner = CliRunner()
    result = runner.invoke(main, ['--code-size', 'xyz', '--block-size', '128', firmware])
    assert result.exit_code == 2
    assert 'invalid integer' in result.output


def test_unsupported_geometry(firmware, fake_usb):
    runner = CliRunner()
    result = runner.invoke(main, ['--code-size', '128k', '--block-size', '128', firmware])
    assert result.exit_code == 1
    assert 'unknown code/block size' in result.output


def test_device_not_found(firmware, fake_usb):
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2', firmware])
    assert result.exit_code == 1
    assert 'try the wait option' in result.output


def test_program(firmware, fake_usb):
    device = FakeDevice()
    fake_usb.devices.append(device)
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2', '-v', firmware])
    assert result.exit_code == 0
    assert device.payloads == [b'\x00\x00' + b'\x0C\x94' * 8 + b'\xFF' * 112, BOOT_128]


def test_program_custom_geometry(firmware, fake_usb):
    device = FakeDevice()
    fake_usb.devices.append(device)
    runner = CliRunner()
    result = runner.invoke(main, ['--code-size=0x7E00', '--block-size=128', '-n', firmware])
    assert result.exit_code == 0
    assert len(device.payloads) == 1


def test_boot_only(fake_usb):
    device = FakeDevice()
    fake_usb.devices.append(device)
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2', '-b'])
    assert result.exit_code == 0
    assert device.payloads == [BOOT_128]


def test_combined_flags(firmware, fake_usb):
    device = FakeDevice()
    fake_usb.devices.append(device)
    runner = CliRunner()
    result = runner.invoke(main, ['--mcu=TEENSY2', '-wv', '-n', firmware])
    assert result.exit_code == 0
    assert len(device.payloads) == 1

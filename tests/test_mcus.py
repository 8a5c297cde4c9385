import pytest

from halfkay.blocks import header_format_for
from halfkay.errors import ConfigurationError
from halfkay.errors import UnknownMcu
from halfkay.mcus import MCUS
from halfkay.mcus import McuProfile
from halfkay.mcus import find_mcu


def test_find_mcu():
    assert find_mcu('atmega32u4') == McuProfile(32256, 128)
    assert find_mcu('TEENSY2PP') == McuProfile(130048, 256)
    assert find_mcu('TeensyLC') == McuProfile(63488, 512)
    assert find_mcu('teensy41') == McuProfile(8126464, 1024)
    assert find_mcu('IMXRT1062') == McuProfile(2031616, 1024)


def test_find_mcu_raises():
    with pytest.raises(UnknownMcu, match="unknown mcu type 'teensy99'"):
        find_mcu('teensy99')

    with pytest.raises(ConfigurationError):
        find_mcu('')


def test_profile_unpacking():
    code_size, block_size = find_mcu('TEENSY31')
    assert code_size == 262144
    assert block_size == 1024


def test_all_geometries_supported():
    for name, profile in MCUS.items():
        header_format_for(profile.code_size, profile.block_size)

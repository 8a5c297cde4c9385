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

"""
Module that contains the command line app.

Why does this file exist, and why not put this in __main__?

  You might be tempted to import things from __main__ later, but that will cause
  problems: the code will get executed twice:

  - When you run `python -m halfkay` python will execute
    ``__main__.py`` as a script. That means there won't be any
    ``halfkay.__main__`` in ``sys.modules``.
  - When you import __main__ it will get executed again (as a module) because
    there's no ``halfkay.__main__`` in ``sys.modules``.

  Also see (1) from https://click.palletsprojects.com/en/stable/setuptools/#setuptools-integration
"""

import logging
from typing import Optional

import click

from .__init__ import __version__
from .errors import ConfigurationError
from .errors import HalfkayError
from .loader import Loader
from .loader import LoaderOptions
from .mcus import MCUS
from .mcus import McuProfile
from .mcus import find_mcu
from .utils import parse_int


class BasedIntParamType(click.ParamType):
    name = 'integer'

    def convert(self, value, param, ctx):
        try:
            return parse_int(value)
        except ValueError:
            self.fail(f'invalid integer: {value!r}', param, ctx)


BASED_INT = BasedIntParamType()

FILE_PATH_IN = click.Path(dir_okay=False)


# ----------------------------------------------------------------------------

def print_version(ctx, _, value):

    if not value or ctx.resilient_parsing:
        return

    click.echo(str(__version__))
    ctx.exit()


def print_mcus(ctx, _, value):

    if not value or ctx.resilient_parsing:
        return

    click.echo('supported mcus are:')
    for name in MCUS:
        click.echo(f' - {name}')
    ctx.exit()


def resolve_profile(
    mcu: Optional[str],
    code_size: Optional[int],
    block_size: Optional[int],
) -> McuProfile:

    if code_size is not None or block_size is not None:
        if mcu:
            raise ConfigurationError('either an mcu or a code/block size pair, not both')
        if code_size is None or block_size is None:
            raise ConfigurationError('both code size and block size must be specified')
        if code_size <= 0 or block_size <= 0:
            raise ConfigurationError('code size and block size must be positive')
        return McuProfile(code_size, block_size)

    if not mcu:
        raise ConfigurationError('mcu type must be specified (see --list-mcus)')

    return find_mcu(mcu)


# ============================================================================

@click.command()
@click.option('--mcu', metavar='MCU', help="""
    Target chip or board name (see --list-mcus).
""")
@click.option('--code-size', type=BASED_INT, help="""
    Custom flash size, instead of --mcu.
""")
@click.option('--block-size', type=BASED_INT, help="""
    Custom write block size, instead of --mcu.
""")
@click.option('-w', '--wait', is_flag=True, help="""
    Wait for the device to appear.
""")
@click.option('-r', '--hard-reboot', is_flag=True, help="""
    Use the rebootor board if the device is not online.
""")
@click.option('-s', '--soft-reboot', is_flag=True, help="""
    Use soft reboot if the device is not online (Teensy 3.x and 4.x).
""")
@click.option('-n', '--no-reboot', is_flag=True, help="""
    No reboot after programming.
""")
@click.option('-b', '--boot-only', is_flag=True, help="""
    Boot only, do not program.
""")
@click.option('-v', '--verbose', is_flag=True, help="""
    Verbose output.
""")
@click.option('--list-mcus', is_flag=True, expose_value=False, is_eager=True,
              callback=print_mcus, help="""
    Lists the supported MCUs and exits.
""")
@click.option('-V', '--version', is_flag=True, expose_value=False, is_eager=True,
              callback=print_version, help="""
    Prints the package version number and exits.
""")
@click.argument('infile', type=FILE_PATH_IN, required=False)
def main(
    mcu: Optional[str],
    code_size: Optional[int],
    block_size: Optional[int],
    wait: bool,
    hard_reboot: bool,
    soft_reboot: bool,
    no_reboot: bool,
    boot_only: bool,
    verbose: bool,
    infile: Optional[str],
) -> None:
    r"""Flashes an Intel HEX file onto a board with the HalfKay bootloader.

    INFILE is the firmware file; it is not needed with --boot-only.
    """

    logging.basicConfig(level=(logging.INFO if verbose else logging.WARNING),
                        format='%(message)s')

    options = LoaderOptions(
        wait=wait,
        hard_reboot=hard_reboot,
        soft_reboot=soft_reboot,
        reboot_after=not no_reboot,
        boot_only=boot_only,
    )

    try:
        profile = resolve_profile(mcu, code_size, block_size)
        loader = Loader(profile, path=infile, options=options)
        loader.run()
    except HalfkayError as exc:
        raise click.ClickException(str(exc)) from exc

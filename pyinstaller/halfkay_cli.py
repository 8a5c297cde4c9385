"""
Run PyInstaller against this script file to build a standalone executable.
Make sure that halfkay and pyusb are installed into the Python environment
before, and that a libusb shared library is available to bundle.
"""
from halfkay.__main__ import main as _main

_main('__main__')

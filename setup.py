#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
#
# Verify SATSCARD and TAPSIGNER answers on the host: python support library
#
# To use this command to install and yet be able to edit the code (here). Great for dev:
#
#   pip install --editable .
#
# with NFC reader support (PC/SC)
#
#   pip install --editable '.[nfc]'
#
# with test dependencies
#
#   pip install --editable '.[test]'
#
import importlib.util
from pathlib import Path

from setuptools import setup

# read version without importing the package (and its dependencies)
spec = importlib.util.spec_from_file_location('version', Path(__file__).parent / 'tapcheck' / 'version.py')
version_module = importlib.util.module_from_spec(spec)
spec.loader.exec_module(version_module)
__version__ = version_module.__version__

# these minimum versions are tested, some earlier values would probably work too.
requirements = [
    'coincurve>=15.0.1',
    'bech32>=1.2.0',
    'base58>=2.1.1',
    'pycryptodome>=3.15.0',
    'cbor2>=5.4.1',
]

# only needed to talk to real cards over USB readers
nfc_requirements = [
    'pyscard>=2.0.2',
]

test_requirements = [
    'pytest',
]

# only for developers playing with crypto libraries - cross library comparisons
test_plus_requirements = [
    'wallycore>=0.8.2',
] + test_requirements

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='tapcheck',
    version=__version__,
    packages=[ 'tapcheck' ],
    python_requires='>=3.7',
    install_requires=requirements,
    extras_require={
        'nfc': nfc_requirements,
        'test': test_requirements,
        'test_plus': test_plus_requirements,
    },
    author='Coinkite Inc.',
    author_email='support@coinkite.com',
    description="Verify the answers of your TAPSIGNER or SATSCARD using Python",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        'Operating System :: POSIX :: Linux',
        'Operating System :: Microsoft :: Windows',
        'Operating System :: MacOS :: MacOS X',
    ],
)

#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
import pytest

from emucard import EmuCard, EmuTransport

@pytest.fixture
def satscard():
    # emulated SATSCARD, with a sealed slot
    return EmuCard()

@pytest.fixture
def tapsigner():
    # emulated TAPSIGNER, key already picked
    return EmuCard(tapsigner=True)

@pytest.fixture
def dev_factory():
    # connect a CKTapCard to an emulated card, trusting that card's fake root
    from tapcheck.proto import CKTapCard

    def doit(card):
        return CKTapCard(EmuTransport(card), roots=card.roots)

    return doit

# EOF

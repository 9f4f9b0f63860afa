#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
from tapcheck.version import __version__

__all__ = [ 'proto', 'exceptions', 'transport', 'constants', 'utils', 'verify_link' ]

# find connected cards
from tapcheck.transport import find_cards, find_first

# base class for working with cards, wants a transport
from tapcheck.proto import CKTapCard

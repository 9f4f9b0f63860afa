#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Check the dynamic URL a card provides over NFC when tapped by a phone.
#
import logging
from urllib.parse import parse_qsl

from .compat import sha256s
from .compat import CT_sig_to_pubkey
from .exceptions import CounterfeitDeviceError, InvalidInputError
from .utils import card_pubkey_to_ident, render_address

logger = logging.getLogger(__name__)

LINK_NONCE_SIZE = 8

STATES = dict(S='Sealed', U='UNSEALED', E='Error/Tampered')

def all_keys(sig, md):
    # generates all possible pubkeys from sig + digest
    for rec_id in range(4):
        # see BIP-137 for magic value "39"... perhaps not well supported tho
        try:
            yield CT_sig_to_pubkey(md, bytes([39 + rec_id]) + sig)
        except ValueError:
            if rec_id >= 2: continue        # no point for that x-coord, normal
            raise

def url_decoder(fragment):
    # Takes the URL (after the # part) and verifies it
    # and returns dict of useful values, or raise on errors/frauds
    if '#' in fragment or '?' in fragment:
        raise InvalidInputError("Provide only the part after the #")

    # signature covers everything up to (and including) last equals sign
    msg = fragment[0:fragment.rfind('=')+1]
    try:
        raw = dict(parse_qsl(fragment, strict_parsing=True))
    except ValueError:
        raise InvalidInputError("Badly formated link")

    try:
        nonce = bytes.fromhex(raw['n'])
        is_tapsigner = bool(raw.get('t', False))
        slot_num = int(raw.get('o', -1))
        addr = raw.get('r', None)
        sig = bytes.fromhex(raw['s'])
        card_ident = bytes.fromhex(raw['c']) if 'c' in raw else None
        state = raw['u']
    except KeyError as exc:
        raise InvalidInputError(f"Required field missing: {exc.args[0]}")
    except ValueError:
        raise InvalidInputError("Badly formated field in link")

    if len(nonce) != LINK_NONCE_SIZE:
        raise InvalidInputError("Wrong nonce size in link")
    if len(sig) != 64:
        raise InvalidInputError("Wrong signature size in link")

    md = sha256s(msg.encode('ascii'))

    if is_tapsigner:
        if not card_ident:
            raise InvalidInputError('missing card ident value')
        full_card_ident = None

        for pubkey in all_keys(sig, md):
            expect = sha256s(pubkey)
            if expect[0:8] == card_ident:
                full_card_ident = card_pubkey_to_ident(pubkey)
                break

        if not full_card_ident:
            logger.warning("NFC link signature does not match card ident")
            raise CounterfeitDeviceError("Could not reconstruct card ident.")

        return dict(nonce=nonce.hex(),
                    card_ident=full_card_ident,
                    virgin=(state == 'U'),
                    is_tapsigner=True, tampered=(state == 'E'))

    # SATSCARD
    confirmed_addr = None
    is_testnet = False

    if addr is not None:
        for pubkey in all_keys(sig, md):
            got = render_address(pubkey, False)
            if got.endswith(addr):
                confirmed_addr = got
                break

            got = render_address(pubkey, True)
            if got.endswith(addr):
                confirmed_addr = got
                is_testnet = True
                break

        if not confirmed_addr:
            logger.warning("NFC link signature does not match address %r", addr)
            raise CounterfeitDeviceError("Could not reconstruct full payment address.")

    rv = dict(state=STATES.get(state, 'Unknown state'), addr=confirmed_addr,
                nonce=nonce.hex(),
                is_tapsigner=False,
                slot_num=slot_num,
                sealed=(state == 'S'),
                tampered=(state == 'E'))

    if is_testnet:
        rv['testnet'] = True

    return rv

# EOF

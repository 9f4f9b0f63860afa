# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Verification core: everything the host must check about a card's answers.
#
# - pure functions, no I/O; transport and card state live in proto.py
# - every failure is one of the typed errors in exceptions.py
#
import logging
from os import urandom
from base64 import b32encode
from binascii import b2a_hex

import bech32

from .constants import *
from .exceptions import FramingError, InvalidInputError, EntropyError
from .exceptions import PathRangeError, MalformedPathError, WrongDeviceTypeError
from .exceptions import BadAuthSignatureError, ProofOfPossessionError, SignatureRecoveryError
from .exceptions import ChainTooShortError, CounterfeitDeviceError
from .compat import hash160, sha256s
from .compat import CT_ecdh, CT_sig_verify, CT_sig_to_pubkey, CT_pick_keypair
from .compat import CT_bip32_derive, CT_priv_to_pubkey

logger = logging.getLogger(__name__)

# show bytes as hex in a string
B2A = lambda x: b2a_hex(x).decode('ascii')

def xor_bytes(a, b): # XOR the bytes of A and B
    if len(a) != len(b):
        raise FramingError(f"xor length mismatch: {len(a)} vs {len(b)}")
    return bytes(i^j for i,j in zip(a,b))

def force_bytes(foo):
    # convert strings to bytes where needed
    try:
        return foo.encode('ascii') if isinstance(foo, str) else foo
    except UnicodeEncodeError:
        raise InvalidInputError("expected ascii text")

def pick_nonce():
    # pick a nonce for our side
    # - must always be a "non trival" value or else card will reject
    for retry in range(3):
        rv = urandom(USER_NONCE_SIZE)
        if rv[0] != rv[-1] or len(set(rv)) >= 2:
            return rv

    raise EntropyError("stuck RNG?")

def signing_message(card_nonce, my_nonce, slot=None, slot_pubkey=None, chain_code=None):
    # Build the byte string the card signs for us:
    #   OPENDIME + card_nonce + my_nonce + [slot number] [slot pubkey] [chain code]
    # - fields are appended in that order, only if provided
    # - every field must be exactly its own width
    fields = [('card nonce', card_nonce, CARD_NONCE_SIZE),
              ('my nonce', my_nonce, USER_NONCE_SIZE)]

    if slot is not None:
        if not isinstance(slot, int) or not (0 <= slot <= 255):
            raise FramingError(f"slot number must fit in one byte: {slot!r}")
        fields.append(('slot', bytes([slot]), SLOT_NUM_SIZE))
    if slot_pubkey is not None:
        fields.append(('slot pubkey', slot_pubkey, PUBKEY_SIZE))
    if chain_code is not None:
        fields.append(('chain code', chain_code, CHAIN_CODE_SIZE))

    for name, value, width in fields:
        if not isinstance(value, (bytes, bytearray)):
            raise FramingError(f"{name} must be bytes")
        if len(value) != width:
            raise FramingError(f"{name} is {len(value)} bytes, expected {width}")

    return MSG_PREFIX + b''.join(bytes(value) for _, value, _ in fields)

def check_sig_size(sig):
    # card signatures are always 64 bytes (r, s); crypto wrappers assume that
    if not isinstance(sig, (bytes, bytearray)) or len(sig) != 64:
        raise FramingError("signature must be 64 bytes")


# high bit set in LE32 indicating hardened BIP-32 path component
HARDENED = 0x8000_0000

def path_component_in_range(num: int) -> bool:
    # cannot be less than 0
    # cannot be more than (2 ** 31) - 1
    if 0 <= num < HARDENED:
        return True
    return False

def path2str(path):
    # take numeric path (list of numbers) and convert to human form
    # - standardizing on "m/84h" style
    return '/'.join(['m'] + [str(i & ~HARDENED)+('h' if i&HARDENED else '') for i in path])

def _path_number(txt, item):
    try:
        return int(txt, 0)
    except ValueError:
        raise MalformedPathError(f"Malformed bip32 path component: {item}")

def str2path(path):
    # normalize notation and return numbers
    rv = []

    for i in path.split('/'):
        if i == 'm':
            continue
        if not i:
            # trailing or duplicated slashes
            continue

        if i[-1] in "'phHP":
            if len(i) < 2:
                raise MalformedPathError(f"Malformed bip32 path component: {i}")
            num = _path_number(i[:-1], i)
            if not path_component_in_range(num):
                raise PathRangeError(f"Hardened path component out of range: {i}")
            here = num | HARDENED
        else:
            here = _path_number(i, i)
            if not path_component_in_range(here):
                raise PathRangeError(f"Non-hardened path component out of range: {i}")

        rv.append(here)

    return rv

# predicates for numeric paths. stop giggling
all_hardened = lambda path: all(bool(i & HARDENED) for i in path)
none_hardened = lambda path: not any(bool(i & HARDENED) for i in path)

def split_bip32_path(path):
    # split into leading hardened part, and whatever follows that
    # - card derives the first, we do the rest
    for pos, i in enumerate(path):
        if not (i & HARDENED):
            break
    else:
        return list(path), []

    rest = path[pos:]
    if not none_hardened(rest):
        raise InvalidInputError(f"Hardened component after non-hardened: {path2str(path)}")

    return list(path[:pos]), list(rest)


def card_pubkey_to_ident(card_pubkey):
    # convert pubkey into a hash formated for humans
    # - sha256(compressed-pubkey)
    # - skip first 8 bytes of that (because that's revealed in NFC URL)
    # - base32 and take first 20 chars in 4 groups of five
    # - insert dashes
    # - result is 23 chars long
    if len(card_pubkey) != PUBKEY_SIZE:
        raise InvalidInputError('expecting compressed pubkey')

    md = b32encode(sha256s(card_pubkey)[8:]).decode('ascii')

    return '-'.join(md[pos:pos+5] for pos in range(0, 20, 5))

def verify_certs(status_resp, check_resp, certs_resp, my_nonce, slot_pubkey=None,
                    roots=FACTORY_ROOT_KEYS):
    # Verify the certificate chain works, returns root pubkey at end of chain.
    # - raises on any verification issue
    if status_resp.get('ver') == OLD_APPLET_VERSION:
        # compat with v0.9.0 cards which never attest to the pubkey
        slot_pubkey = None

    return verify_certs_ll(status_resp['card_nonce'], status_resp['pubkey'], my_nonce,
                            certs_resp['cert_chain'], check_resp['auth_sig'],
                            slot_pubkey=slot_pubkey, roots=roots)

def verify_certs_ll(card_nonce, card_pubkey, my_nonce, cert_chain, signature,
                    slot_pubkey=None, roots=FACTORY_ROOT_KEYS):
    # Lower-level version with just the facts coming in...
    if len(cert_chain) < 2:
        raise ChainTooShortError("Missing certs")
    if any(len(c) != 65 for c in cert_chain):
        raise FramingError("certificates must be 65-byte recoverable signatures")
    if len(signature) != 64:
        raise FramingError("auth signature must be 64 bytes")

    # in v1.0.0+ SATSCARD, the pubkey of the sealed slot (if any) is included here
    msg = signing_message(card_nonce, my_nonce, slot_pubkey=slot_pubkey)

    # check card can and does sign with indicated key
    if not CT_sig_verify(card_pubkey, sha256s(msg), signature):
        raise BadAuthSignatureError("bad sig in verify_certs")

    # follow certificate chain to factory root
    pubkey = card_pubkey
    for depth, sig in enumerate(cert_chain):
        try:
            pubkey = CT_sig_to_pubkey(sha256s(pubkey), sig)
        except ValueError as exc:
            logger.warning("Certificate %d in chain is unusable: %s", depth, exc)
            raise CounterfeitDeviceError(
                        "Certificate chain is broken. Card is counterfeit.") from exc

    if pubkey not in roots:
        # fraudulent device
        logger.warning("Chain ends at unknown root: %s", B2A(pubkey))
        raise CounterfeitDeviceError("Root cert is not from Coinkite. Card is counterfeit.")

    logger.info("Root cert is known: %s", roots[pubkey])

    return pubkey

def recover_pubkey(status_resp, read_resp, my_nonce, ses_key):
    # [TS] Given the response from "status" and "read" commands,
    # and the nonce we gave for read command, and session key ... reconstruct
    # the card's current pubkey.
    if not status_resp.get('tapsigner', False):
        raise WrongDeviceTypeError("recover_pubkey: only for TAPSIGNER")

    msg = signing_message(status_resp['card_nonce'], my_nonce, slot=0)

    # have to decrypt pubkey
    pubkey = read_resp['pubkey']
    if len(pubkey) != PUBKEY_SIZE:
        raise FramingError("encrypted pubkey must be 33 bytes")
    pubkey = pubkey[0:1] + xor_bytes(pubkey[1:], ses_key)

    # Critical: proves card knows key
    check_sig_size(read_resp['sig'])
    ok = CT_sig_verify(pubkey, sha256s(msg), read_resp['sig'])
    if not ok:
        raise ProofOfPossessionError("Bad sig in recover_pubkey")

    return pubkey

def recover_address(status_resp, read_resp, my_nonce):
    # [SC] Given the response from "status" and "read" commands, and the
    # nonce we gave for read command, reconstruct the card's verified payment
    # address. Check prefix/suffix match what's expected
    if status_resp.get('tapsigner', False):
        raise WrongDeviceTypeError("recover_address: TAPSIGNER not supported")

    sl = status_resp['slots'][0]
    msg = signing_message(status_resp['card_nonce'], my_nonce, slot=sl)

    pubkey = read_resp['pubkey']

    # Critical: proves card knows key
    check_sig_size(read_resp['sig'])
    ok = CT_sig_verify(pubkey, sha256s(msg), read_resp['sig'])
    if not ok:
        raise ProofOfPossessionError("Bad sig in recover_address")

    expect = status_resp['addr']
    if '_' not in expect:
        raise CounterfeitDeviceError("Corrupt response: address is not trimmed")
    left = expect[0:expect.find('_')]
    right = expect[expect.rfind('_')+1:]

    # Critical: counterfieting check
    addr = render_address(pubkey, status_resp.get('testnet', False))
    if not (addr.startswith(left)
                and addr.endswith(right)
                and len(left) == len(right) == ADDR_TRIM):
        logger.warning("Card address %r does not match %r", expect, addr)
        raise CounterfeitDeviceError("Corrupt response")

    return pubkey, addr

def calc_xcvc(cmd, card_nonce, his_pubkey, cvc):
    # Calcuate session key and xcvc value need for auth'ed commands
    # - also picks an arbitrary keypair for my side of the ECDH
    # - requires pubkey from card and proposed CVC value

    # fresh new ephemeral key for our side of connection, every time
    my_privkey, my_pubkey = CT_pick_keypair()

    session_key, xcvc = calc_xcvc_ll(cmd, card_nonce, his_pubkey, cvc, my_privkey)

    return session_key, dict(epubkey=my_pubkey, xcvc=xcvc)

def _cvc_mask(cmd, card_nonce, session_key, length):
    if len(card_nonce) != CARD_NONCE_SIZE:
        raise InvalidInputError("card nonce is wrong size")

    md = sha256s(card_nonce + force_bytes(cmd))
    return xor_bytes(session_key, md)[0:length]

def calc_xcvc_ll(cmd, card_nonce, his_pubkey, cvc, my_privkey):
    # Same, but caller provides ephemeral private key; returns (session_key, xcvc)
    # - never reuse my_privkey between commands
    cvc = force_bytes(cvc)
    if not (CVC_LENGTH <= len(cvc) <= CVC_MAX_LENGTH):
        raise InvalidInputError(f"CVC must be {CVC_LENGTH} to {CVC_MAX_LENGTH} bytes")

    # standard ECDH
    # - result is sha256s(compressed shared point (33 bytes))
    session_key = CT_ecdh(his_pubkey, my_privkey)

    mask = _cvc_mask(cmd, card_nonce, session_key, len(cvc))

    return session_key, xor_bytes(cvc, mask)

def decode_xcvc(cmd, card_nonce, session_key, xcvc):
    # card's side of calc_xcvc: recover the CVC from what we sent
    return xor_bytes(xcvc, _cvc_mask(cmd, card_nonce, session_key, len(xcvc)))

def render_address(pubkey, testnet=False):
    # make the text string used as a payment address

    if len(pubkey) == 32:
        # actually a private key, convert
        pubkey = CT_priv_to_pubkey(pubkey)
    elif len(pubkey) != PUBKEY_SIZE:
        raise InvalidInputError("need compressed pubkey or private key")

    HRP = 'bc' if not testnet else 'tb'
    return bech32.encode(HRP, 0, hash160(pubkey))

def verify_master_pubkey(pub, sig, chain_code, my_nonce, card_nonce):
    # using signature response from 'derive' command, recover the master pubkey
    # for this slot
    msg = signing_message(card_nonce, my_nonce, chain_code=chain_code)

    check_sig_size(sig)
    ok = CT_sig_verify(pub, sha256s(msg), sig)
    if not ok:
        raise ProofOfPossessionError("bad sig in verify_master_pubkey")

    return pub

def verify_derive_address(chain_code, master_pub, testnet=False):
    # re-derive the address we should expect
    # - this is "m/0" in BIP-32 nomenclature
    # - accepts master public key (before unseal) or master private key (after)
    pubkey = CT_bip32_derive(chain_code, master_pub, [0])

    return render_address(pubkey, testnet=testnet), pubkey


def make_recoverable_sig(digest, sig, addr=None, expect_pubkey=None, is_testnet=False):
    # The card will only make non-recoverable signatures (64 bytes)
    # but we usually know the address which should be implied by
    # the signature's pubkey, so we can try all values and discover
    # the correct "rec_id"
    if len(digest) != 32:
        raise InvalidInputError("digest must be 32 bytes")
    if len(sig) != 64:
        raise InvalidInputError("signature must be 64 bytes")

    for rec_id in range(4):
        # see BIP-137 for magic value "39"... perhaps not well supported tho
        rec_sig = bytes([39 + rec_id]) + sig
        try:
            pubkey = CT_sig_to_pubkey(digest, rec_sig)
        except ValueError:
            if rec_id >= 2: continue        # x-coord past curve order: no such point
            raise

        if expect_pubkey and expect_pubkey != pubkey:
            continue
        if addr:
            got = render_address(pubkey, is_testnet)
            if not got.endswith(addr):
                continue

        return rec_sig

    # failed to recover right pubkey value
    raise SignatureRecoveryError("sig may not be created by that address/pubkey??")

# EOF

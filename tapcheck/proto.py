#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# proto.py
#
# Drive the card through a transport, and run every answer through the
# verification code in utils.py before trusting it. Both TAPSIGNER and SATSCARD.
#
import logging
from typing import List

from .utils import *
from .constants import *
from .exceptions import CardRuntimeError, CounterfeitDeviceError, WrongDeviceTypeError
from .exceptions import InvalidInputError, ProofOfPossessionError, FramingError
from .compat import CT_sig_verify, hash160
from .bip32 import PubKeyNode, encode_base58_checksum

logger = logging.getLogger(__name__)

class CKTapCard:
    #
    # Protocol/wrapper for cards. Call methods on this instance to get work done.
    #
    def __init__(self, transport, roots=FACTORY_ROOT_KEYS):
        self.tr = transport
        self.roots = roots
        self.first_look()

    def __repr__(self):
        kk = getattr(self, 'card_ident', '???')
        ty = getattr(self, 'product_name', '???')
        return '<%s %s via %s: %s> ' % (self.__class__.__name__, ty, self.tr.name, kk)

    def close(self):
        # optional? cleanup connection
        self.tr.close()
        del self.tr

    def send(self, cmd, raise_on_error=True, **args):
        # Send a command, get response, but also catch some card state
        # changes and mirror them in our state.
        # - command is a short string, such as "status"
        stat_word, resp = self.tr.send(cmd, **args)

        if stat_word != SW_OKAY:
            # Assume error if ANY bad SW value seen; promote for debug purposes
            if 'error' not in resp:
                resp['error'] = "Got error SW value: 0x%04x" % stat_word
            resp['stat_word'] = stat_word

        if 'card_nonce' in resp:
            # many responses provide an updated card_nonce needed for
            # the *next* comand. Track it.
            self.card_nonce = resp['card_nonce']

        if raise_on_error and 'error' in resp:
            msg = resp.pop('error')
            code = resp.pop('code', 500)
            raise CardRuntimeError(f'{code} on {cmd}: {msg}', code, msg)

        return resp

    def first_look(self):
        # Load up details from card
        # - can be called multiple times
        st = self.send('status')
        if st.get('proto') != 1:
            raise CardRuntimeError("Unknown card protocol version", 500, repr(st.get('proto')))
        if st.get('tampered'):
            logger.warning("Card has set tampered flag!")

        self.card_pubkey = st['pubkey']
        self.card_ident = card_pubkey_to_ident(self.card_pubkey)

        self.applet_version = st['ver']
        self.birth_height = st.get('birth', None)
        self.is_testnet = st.get('testnet', False)

        self.is_tapsigner = st.get('tapsigner', False)
        self.product_name = 'TAPSIGNER' if self.is_tapsigner else 'SATSCARD'

        self.active_slot, self.num_slots = st.get('slots', (0,1))

        # expensive to do more than once
        self._certs_checked = False

        logger.debug("Found %s %s (v%s)", self.product_name, self.card_ident,
                                            self.applet_version)

    def send_auth(self, cmd, cvc, **args):
        # Take CVC and do ECDH crypto and provide the CVC in encrypted form
        # - returns session key and usual auth arguments needed
        # - skip if CVC is None and just do normal stuff (optional auth on some cmds)
        if cvc:
            session_key, auth_args = calc_xcvc(cmd, self.card_nonce, self.card_pubkey, cvc)
            args.update(auth_args)
        else:
            session_key = None

        # A few commands take an encrypted argument, and the caller didn't
        # know the session key yet. So xor it for them.
        if cmd == 'sign':
            if session_key is None:
                raise InvalidInputError("CVC required")
            args['digest'] = xor_bytes(args['digest'], session_key)

        return session_key, self.send(cmd, **args)

    def _need(self, tapsigner):
        if bool(self.is_tapsigner) != tapsigner:
            raise WrongDeviceTypeError(f"Not supported on {self.product_name}")

    #
    # Wrappers and Helpers
    #
    def certificate_check(self, pubkey=None):
        # Verify the certificate chain and the public key of the card
        # - assures this card was produced in the factory
        # - does not relate to payment addresses or slot usage
        # - raises on errors/failed validation
        # - 'pubkey' is expected key of the sealed slot (or None)
        if pubkey is None and not self.is_tapsigner:
            # SATSCARD includes pubkey of sealed slot (if any) in its answer
            pubkey = self.get_pubkey()

        st = self.send('status')
        certs = self.send('certs')

        n = pick_nonce()
        check = self.send('check', nonce=n)

        rv = verify_certs(st, check, certs, n, pubkey, roots=self.roots)
        self._certs_checked = True

        return rv

    def get_address(self, faster=False, incl_pubkey=False):
        # SATSCARD: get current payment address for card
        # - does 100% full verification by default
        # - returns a bech32 address as a string, or tuple(compressed_pubkey, bech32)
        self._need(tapsigner=False)

        st = self.send('status')
        if 'addr' not in st:
            # Current slot is not yet setup.
            return (None, None) if incl_pubkey else None

        # Use special-purpose "read" command for current (sealed) slot.
        n = pick_nonce()
        rr = self.send('read', nonce=n)

        pubkey, addr = recover_address(st, rr, n)

        if not faster:
            # check certificate chain
            if not self._certs_checked:
                self.certificate_check(pubkey)

            # additional check: did card include chain_code in generated private key?
            my_nonce = pick_nonce()
            card_nonce = self.card_nonce
            rr = self.send('derive', nonce=my_nonce)
            master_pub = verify_master_pubkey(rr['master_pubkey'], rr['sig'],
                                                rr['chain_code'], my_nonce, card_nonce)
            derived_addr, _ = verify_derive_address(rr['chain_code'], master_pub,
                                                        testnet=self.is_testnet)
            if derived_addr != addr:
                logger.warning("Derived %s but card shows %s", derived_addr, addr)
                raise CounterfeitDeviceError("card did not derive address as expected")

        if incl_pubkey:
            return pubkey, addr

        return addr

    def get_xfp(self, cvc):
        # TAPSIGNER: fetch master xpub, take pubkey from that and calc XFP
        self._need(tapsigner=True)
        _, st = self.send_auth('xpub', cvc, master=True)
        xpub = st['xpub']
        return hash160(xpub[-33:])[0:4]

    def get_xpub(self, cvc, master=False):
        # TAPSIGNER: fetch XPUB, either derived or master one
        # - result is BIP-32 serialized and base58-check encoded
        self._need(tapsigner=True)
        _, st = self.send_auth('xpub', cvc, master=master)
        xpub = st['xpub']
        if len(xpub) != 78:
            raise FramingError("serialized xpub must be 78 bytes")
        return encode_base58_checksum(xpub)

    def get_pubkey(self, cvc=None, subpath: str=None):
        # TAPSIGNER: Get the public key for current derived path (needs CVC)
        # SATSCARD: Get pubkey of current slot which must be sealed, else return None
        # - if subpath is provided (TAPSIGNER), fetch the xpub derived on-card
        #   and apply further non-hardened derivation here
        st = self.send('status')

        if self.is_tapsigner:
            if 'path' not in st:
                return None

            if not subpath:
                n = pick_nonce()
                ses_key, rr = self.send_auth('read', cvc, nonce=n)

                return recover_pubkey(st, rr, n, ses_key)

            sub = str2path(subpath)
            if not none_hardened(sub):
                raise InvalidInputError(f"subpath {path2str(sub)[2:]} contains hardened components")

            hd = PubKeyNode.parse(self.get_xpub(cvc), testnet=self.is_testnet)
            return hd.get_extended_pubkey_from_path(sub).sec()

        if subpath:
            raise InvalidInputError(f"Cannot use 'subpath' option for {self.product_name}")

        if 'addr' not in st:
            return None

        n = pick_nonce()
        rr = self.send('read', nonce=n)
        pubkey, _ = recover_address(st, rr, n)

        return pubkey

    def _get_derivation(self) -> List[int]:
        # TAPSIGNER only: what's the current derivation path, which might be
        # just empty (aka 'm').
        self._need(tapsigner=True)
        st = self.send('status')
        path = st.get('path', None)
        if path is None:
            raise CardRuntimeError("No private key picked yet.", 406, 'no key')
        return path

    def get_derivation(self) -> str:
        return path2str(self._get_derivation())

    def _set_derivation(self, path: List[int], cvc):
        # TAPSIGNER only: change derivation path; result is proven by the card
        self._need(tapsigner=True)

        if len(path) > DERIVE_MAX_BIP32_PATH_DEPTH:
            raise InvalidInputError(f"No more than {DERIVE_MAX_BIP32_PATH_DEPTH} path components allowed.")

        if not all_hardened(path):
            raise InvalidInputError("All path components must be hardened")

        my_nonce = pick_nonce()
        card_nonce = self.card_nonce
        _, resp = self.send_auth('derive', cvc, path=path, nonce=my_nonce)

        pubkey = verify_master_pubkey(resp['pubkey'], resp['sig'], resp['chain_code'],
                                        my_nonce, card_nonce)

        return resp['chain_code'], pubkey

    def set_derivation(self, path: str, cvc):
        return self._set_derivation(path=str2path(path), cvc=cvc)

    def derive_xpub_at_path(self, cvc, fullpath: str):
        # TAPSIGNER: Returns xpub for given full path.
        # - side-effect: hardened part of path becomes the derivation stored on card
        self._need(tapsigner=True)

        hardened, non_hardened = split_bip32_path(str2path(fullpath))
        self._set_derivation(path=hardened, cvc=cvc)

        xpub = self.get_xpub(cvc)
        if not non_hardened:
            return xpub

        hd = PubKeyNode.parse(xpub, testnet=self.is_testnet)
        return hd.get_extended_pubkey_from_path(non_hardened).extended_public_key()

    def sign_digest(self, cvc: str, digest: bytes, slot: int=0, subpath: str=None,
                        fullpath: str=None) -> bytes:
        """
        Sign 32 bytes digest and return 65 bytes long recoverable signature.

        On TAPSIGNER, subpath (two non-hardened components at most) is
        added to the derivation path already set on the card. If fullpath
        is given instead, subpath is ignored: the hardened part of fullpath
        is set on the card first, and the rest becomes the subpath.

        Returns recoverable signature (header[1b], r[32b], s[32b])
        """
        if len(digest) != 32:
            raise InvalidInputError("Digest must be exactly 32 bytes")

        if not self.is_tapsigner and (subpath or fullpath):
            raise InvalidInputError(f"Cannot use 'subpath/fullpath' option for {self.product_name}")

        if fullpath:
            hardened, sub = split_bip32_path(str2path(fullpath))
            if len(sub) <= 2:
                self._set_derivation(path=hardened, cvc=cvc)
        else:
            sub = str2path(subpath) if subpath else []

        if len(sub) > 2:
            raise InvalidInputError(f"Length of subpath {path2str(sub)[2:]} is greater than 2")
        if not none_hardened(sub):
            raise InvalidInputError(f"subpath {path2str(sub)[2:]} contains hardened components")

        if self.is_tapsigner:
            _, resp = self.send_auth('sign', cvc, slot=0, digest=digest, subpath=sub)
        else:
            # do not pass subpath argument to a SATSCARD
            _, resp = self.send_auth('sign', cvc, slot=slot, digest=digest)

        expect_pub = resp['pubkey']
        sig = resp['sig']
        check_sig_size(sig)
        if not CT_sig_verify(expect_pub, digest, sig):
            raise ProofOfPossessionError("card signature does not verify")

        return make_recoverable_sig(digest, sig, addr=None, expect_pubkey=expect_pub,
                                        is_testnet=self.is_testnet)

# EOF

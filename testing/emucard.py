#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Emulate enough of a SATSCARD or TAPSIGNER to exercise the host side.
#
# - factory root is made up here, so pass card.roots to the verifiers
# - knobs on the instance let tests make the card misbehave
#
import os
import cbor2

from tapcheck.bip32 import PrvKeyNode
from tapcheck.compat import sha256s, CT_pick_keypair, CT_sign, CT_ecdh, CT_priv_to_pubkey
from tapcheck.constants import ADDR_TRIM, CARD_NONCE_SIZE, CARD_ATR, APP_ID, SW_OKAY
from tapcheck.constants import CBOR_CLA, CBOR_INS
from tapcheck.transport import CKTapTransportABC
from tapcheck.utils import xor_bytes, decode_xcvc, render_address, signing_message

NUM_SLOTS = 10
HARD = lambda x: (x | 0x8000_0000)
DEFAULT_TAPSIGNER_PATH = [ HARD(84), HARD(0), HARD(0) ]

class CardError(Exception):
    def __init__(self, msg, code):
        self.code = code
        super().__init__(msg)

def trim_address(a):
    # remove middle part of bech32 address, replace with underscore
    return a[:ADDR_TRIM] + '___' + a[-ADDR_TRIM:]

def fake_cert_chain(card_pubkey):
    # Make up some certs for batch and root, sign card's pubkey with batch and make chain.
    r, r_pub = CT_pick_keypair()
    b, b_pub = CT_pick_keypair()

    # NOTE: these signatures are "recoverable" type, since the card doesn't need to make them
    b_sig = CT_sign(b, sha256s(card_pubkey), recoverable=True)
    r_sig = CT_sign(r, sha256s(b_pub), recoverable=True)

    return r_pub, [b_sig, r_sig]


class EmuCard:
    def __init__(self, tapsigner=False, testnet=False, ver='1.0.0', cvc=b'123456'):
        self.card_privkey, self.card_pubkey = CT_pick_keypair()
        self.root_pubkey, self.cert_chain = fake_cert_chain(self.card_pubkey)
        self.roots = { self.root_pubkey: 'Emulated Root' }

        self.is_tapsigner = tapsigner
        self.testnet = testnet
        self.ver = ver
        self.cvc = cvc
        self.active_slot = 0
        self._new_nonce()

        # BIP-32 master for current slot: chain code picked by "user"
        self.master_pk = os.urandom(32)
        self.chain_code = os.urandom(32)
        self.master = PrvKeyNode(key=self.master_pk, chain_code=self.chain_code)

        self.path = DEFAULT_TAPSIGNER_PATH if tapsigner else [0]
        self.node = self.master.get_extended_pubkey_from_path(self.path)

        # misbehaviour
        self.shown_addr = None          # override trimmed address in status
        self.shown_pubkey = None        # lie about pubkey in read
        self.wrong_sig = False          # sign with some other key

    @property
    def slot_privkey(self):
        return self.node.key

    @property
    def slot_pubkey(self):
        return self.node.sec()

    @property
    def addr(self):
        return render_address(self.slot_pubkey, self.testnet)

    def _new_nonce(self):
        # call when we need a fresh nonce
        self.nonce = os.urandom(CARD_NONCE_SIZE)

    def _sign(self, privkey, msg, digest=None):
        # sign sha256(msg), or a digest provided as-is
        if self.wrong_sig:
            privkey, _ = CT_pick_keypair()
        return CT_sign(privkey, digest or sha256s(msg))

    def _validate_cvc(self, cmd, epubkey, xcvc):
        # Check they've done the math right and know the CVC printed on us.
        if epubkey is None or xcvc is None:
            raise CardError('need epub&xcvc', 403)

        ses_key = CT_ecdh(epubkey, self.card_privkey)
        if decode_xcvc(cmd, self.nonce, ses_key, xcvc) != self.cvc:
            raise CardError('bad auth', 401)

        return ses_key

    def dispatch(self, cmd, **args):
        fn = getattr(self, 'cmd_' + cmd, None)
        if fn is None:
            return dict(error='unknown command', code=404)
        try:
            return fn(**args)
        except CardError as exc:
            return dict(error=str(exc), code=exc.code)

    def cmd_status(self, **unused):
        rv = dict(proto=1, ver=self.ver, birth=700001,
                    pubkey=self.card_pubkey, card_nonce=self.nonce)
        if self.testnet:
            rv['testnet'] = True

        if self.is_tapsigner:
            rv['tapsigner'] = True
            rv['num_backups'] = 1
            rv['path'] = self.path
        else:
            rv['slots'] = (self.active_slot, NUM_SLOTS)
            rv['addr'] = self.shown_addr or trim_address(self.addr)

        return rv

    def cmd_read(self, nonce, epubkey=None, xcvc=None, **unused):
        slot = 0 if self.is_tapsigner else self.active_slot
        msg = signing_message(self.nonce, nonce, slot=slot)

        pubkey = self.shown_pubkey or self.slot_pubkey
        if self.is_tapsigner:
            ses_key = self._validate_cvc('read', epubkey, xcvc)
            pubkey = pubkey[0:1] + xor_bytes(pubkey[1:], ses_key)

        sig = self._sign(self.slot_privkey, msg)
        self._new_nonce()

        return dict(sig=sig, pubkey=pubkey, card_nonce=self.nonce)

    def cmd_check(self, nonce, **unused):
        # prove our pubkey was signed by certs
        # - v1.0.0+ SATSCARD also includes the pubkey of sealed slot
        slot_pubkey = None
        if not self.is_tapsigner and self.ver != '0.9.0':
            slot_pubkey = self.slot_pubkey
        msg = signing_message(self.nonce, nonce, slot_pubkey=slot_pubkey)

        sig = self._sign(self.card_privkey, msg)
        self._new_nonce()

        return dict(auth_sig=sig, card_nonce=self.nonce)

    def cmd_certs(self, **unused):
        return dict(cert_chain=self.cert_chain)

    def cmd_derive(self, nonce, path=None, epubkey=None, xcvc=None, **unused):
        if self.is_tapsigner:
            self._validate_cvc('derive', epubkey, xcvc)
            self.path = list(path)
            self.node = self.master.get_extended_pubkey_from_path(self.path)

            msg = signing_message(self.nonce, nonce, chain_code=self.node.chain_code)
            sig = self._sign(self.slot_privkey, msg)
            self._new_nonce()

            return dict(sig=sig, chain_code=self.node.chain_code,
                            pubkey=self.slot_pubkey, card_nonce=self.nonce)

        msg = signing_message(self.nonce, nonce, chain_code=self.chain_code)
        sig = self._sign(self.master_pk, msg)
        self._new_nonce()

        return dict(sig=sig, chain_code=self.chain_code,
                        master_pubkey=CT_priv_to_pubkey(self.master_pk),
                        card_nonce=self.nonce)

    def cmd_xpub(self, master=False, epubkey=None, xcvc=None, **unused):
        # BIP-32 serialized, not base58
        if not self.is_tapsigner:
            raise CardError('only for ts', 404)
        self._validate_cvc('xpub', epubkey, xcvc)

        node = self.master if master else self.node
        rv = node.serialize_public(version=(0x043587CF if self.testnet else 0x0488B21E))
        assert len(rv) == 78

        self._new_nonce()
        return dict(xpub=rv, card_nonce=self.nonce)

    def cmd_sign(self,digest, slot=0, subpath=(), epubkey=None, xcvc=None, **unused):
        ses_key = self._validate_cvc('sign', epubkey, xcvc)
        digest = xor_bytes(digest, ses_key)

        node = self.node
        if self.is_tapsigner and subpath:
            node = PrvKeyNode(key=node.key, chain_code=node.chain_code)
            node = node.get_extended_pubkey_from_path(subpath)

        sig = self._sign(node.key, None, digest=digest)
        self._new_nonce()

        return dict(sig=sig, pubkey=node.sec(), slot=slot, card_nonce=self.nonce)


class EmuTransport(CKTapTransportABC):
    # CBOR in, CBOR out: same path as real cards, minus the radio
    name = 'EMU'

    def __init__(self, card):
        self.card = card

    def get_ATR(self):
        return CARD_ATR

    def _send_recv(self, msg):
        req = cbor2.loads(msg)
        cmd = req.pop('cmd')
        return SW_OKAY, cbor2.dumps(self.card.dispatch(cmd, **req))


class FakeReaderConnection:
    # quacks like a pyscard CardConnection, with our card in the field
    def __init__(self, card, atr=CARD_ATR):
        self.card = card
        self.atr = atr
        self.selected = False
        self.log = []

    def connect(self):
        pass

    def getATR(self):
        return self.atr

    def disconnect(self):
        self.card = None

    def transmit(self, apdu):
        cla, ins, p1, p2, ln = apdu[0:5]
        data = bytes(apdu[5:])
        assert ln == len(data)
        self.log.append((cla, ins))

        if (cla, ins, p1) == (0x00, 0xa4, 4):
            self.selected = (data == APP_ID)
            return [], (0x90 if self.selected else 0x6a), (0x00 if self.selected else 0x82)

        assert (cla, ins) == (CBOR_CLA, CBOR_INS)
        req = cbor2.loads(data)
        cmd = req.pop('cmd')
        return list(cbor2.dumps(self.card.dispatch(cmd, **req))), 0x90, 0x00

# EOF

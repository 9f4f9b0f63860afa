# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# transport.py
#
# Move CBOR encoded commands between the desktop and the card. No retries
# here: a failed exchange is reported and the caller starts over with a
# fresh nonce.
#
import logging

import cbor2

from .constants import CARD_ATR, APP_ID, CBOR_CLA, CBOR_INS, SW_OKAY

logger = logging.getLogger(__name__)

def find_cards():
    #
    # Search all connected card readers, and find all cards that are present.
    #
    # - generator function.
    #
    from smartcard.System import readers as get_readers
    from smartcard.Exceptions import CardConnectionException, NoCardException
    from .proto import CKTapCard

    readers = get_readers()
    if not readers:
        raise RuntimeError("No USB card readers found. Need at least one.")

    # search for our card
    for r in readers:
        try:
            conn = r.createConnection()
        except Exception as exc:
            logger.debug("Reader %s unusable: %s", r, exc)
            continue

        try:
            conn.connect()
            atr = conn.getATR()
        except (CardConnectionException, NoCardException):
            logger.debug("Empty reader: %s", r)
            continue

        if atr == CARD_ATR:
            tr = CKTapNFCTransport(conn)
            yield CKTapCard(tr)
        else:
            logger.info("Got ATR: %s", atr)

def find_first():
    # operate on the first card we can find
    for c in find_cards():
        return c

    return None

class CKTapTransportABC:
    #
    # Abstract base class. Low level details about talking our protocol.
    #
    name = 'ABC'

    def _send_recv(self, msg):
        # take CBOR encoded request, and round-trip the request + response
        # - returns (status word, response bytes)
        raise NotImplementedError

    def get_ATR(self):
        # ATR = Answer To Reset
        raise NotImplementedError

    def close(self):
        # release resources
        pass

    def send(self, cmd, **args):
        # Serialize command, send it as ADPU, get response and decode

        args = dict(args)
        args['cmd'] = cmd
        msg = cbor2.dumps(args)

        logger.debug(">> %s (%s)", cmd, ', '.join(k+'='+(str(v) if len(str(v)) < 9 else '...')
                                            for k,v in args.items() if k != 'cmd'))

        # Send and wait for reply
        stat_word, resp = self._send_recv(msg)

        try:
            resp = cbor2.loads(resp) if resp else {}
        except cbor2.CBORDecodeError:
            raise RuntimeError('Bad CBOR from card')

        if not isinstance(resp, dict):
            raise RuntimeError('Bad CBOR from card')

        if 'error' not in resp:
            logger.debug("<< %s", ', '.join(resp.keys()))
        else:
            logger.debug("<< %r", resp)

        return stat_word, resp

class CKTapNFCTransport(CKTapTransportABC):
    #
    # For talking to a real card over USB to a reader.
    #
    name = 'NFC'

    def __init__(self, card_conn):
        # Check connection they gave us
        # - if you don't have that, use find_cards instead
        atr = card_conn.getATR()
        if atr != CARD_ATR:
            raise RuntimeError("wrong ATR from card")

        self._conn = card_conn

        # Perform "ISO Select" to pick our app
        # - 00 a4 04 00 (APPID)
        # - probably optional
        sw, resp = self._apdu(0x00, 0xa4, APP_ID, p1=4)
        if sw != SW_OKAY:
            raise RuntimeError("ISO app select failed")

    def close(self):
        # release resources
        self._conn.disconnect()
        del self._conn

    def get_ATR(self):
        return self._conn.getATR()

    def _apdu(self, cls, ins, data, p1=0, p2=0):
        # send APDU to card
        lst = [ cls, ins, p1, p2, len(data)] + list(data)
        resp, sw1, sw2 = self._conn.transmit(lst)
        resp = bytes(resp)
        return ((sw1 << 8) | sw2), resp

    def _send_recv(self, msg):
        # send raw bytes (already CBOR encoded) and get response back
        if len(msg) > 255:
            raise ValueError("msg too long")
        return self._apdu(CBOR_CLA, CBOR_INS, msg)

# EOF

#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Wrappers for choice of crypto libraries. AKA API Cleanup
#
# My standards:
# - pubkeys: 33 bytes, always compressed
# - private key: 32 bytes
# - signature: 64 bytes or 65 bytes if recoverable (BIP-137 header first)
# - no DER, no PEM, no other serializations
# - message digests (for sig/verify) are already digested
# - ECDSA verify returns bool, doesn't raise exception
# - pubkey recovery raises ValueError when it cannot recover
# - tragically? these all are libsecp256k1 underneath
#
from hashlib import sha256

from Crypto.Hash import RIPEMD160

__all__ = [ 'sha256s', 'hash160',
            'CT_ecdh', 'CT_sig_verify', 'CT_sig_to_pubkey', 'CT_sign',
            'CT_pick_keypair', 'CT_bip32_derive', 'CT_priv_to_pubkey']

# Might be overriden below.
#
def sha256s(msg):
    # single-shot SHA256
    return sha256(msg).digest()

def hash160(x):
    # classic bitcoin nested hashes
    # - openssl 3 often lacks ripemd160, so not using hashlib for that part
    return RIPEMD160.new(sha256s(x)).digest()


try:
    # Wally Core <https://wally.readthedocs.io/en/release_0.8.3/crypto/>
    # - only if installed: see test_plus extras
    import wallycore

    from tapcheck.wrap_wally import hash160, sha256s
    from tapcheck.wrap_wally import CT_ecdh, CT_sig_verify, CT_sig_to_pubkey, CT_sign
    from tapcheck.wrap_wally import CT_pick_keypair, CT_bip32_derive, CT_priv_to_pubkey

except ImportError:
    try:
        # Coincurve <https://ofek.dev/coincurve/api/>
        import coincurve

        from tapcheck.wrap_coincurve import CT_ecdh, CT_sig_verify, CT_sig_to_pubkey, CT_sign
        from tapcheck.wrap_coincurve import CT_pick_keypair, CT_bip32_derive, CT_priv_to_pubkey

    except ImportError:
        raise RuntimeError("need a crypto library: pip install coincurve")

# EOF

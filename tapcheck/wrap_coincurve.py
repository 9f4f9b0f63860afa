#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
#
# Compatibility wrapper for "coincurve".
#
# nice docs: <https://ofek.dev/coincurve/api/>
#
# - generally using terribile serializations for signatures (DER)
# - docs do not make it clear what serialization is needed
#
from coincurve.ecdsa import deserialize_compact, serialize_compact, der_to_cdata, cdata_to_der
from coincurve import PrivateKey, PublicKey

def rec_id_from_header(header):
    # from BIP-137
    if 31 <= header <= 34:
        return header - 31        # P2PKH compressed (most compatible)
    elif 39 <= header <= 42:
        return header - 39        # P2WPKH (most correct for this project)

    raise ValueError(f'See BIP-137 for recid encoding, saw: {header}')

def CT_sig_verify(pub, msg_digest, sig):
    assert len(sig) == 64
    try:
        der = cdata_to_der(deserialize_compact(sig))
        return PublicKey(pub).verify(der, msg_digest, hasher=None)
    except ValueError:
        # unparsable pubkey or signature values: same as a bad signature
        return False

def CT_sig_to_pubkey(msg_digest, sig):
    assert len(sig) == 65
    rec_id = rec_id_from_header(sig[0])

    sig2 = sig[1:] + bytes([rec_id])
    nxt = PublicKey.from_signature_and_message(sig2, msg_digest, hasher=None)
    return nxt.format()

def CT_ecdh(his_pubkey, my_privkey):
    # returns a 32-byte session key, which is sha256s(compressed point)
    return PrivateKey(my_privkey).ecdh(his_pubkey)

def CT_pick_keypair():
    # Choose pub/private pair, return private key (32 bytes) and compressed pubkey
    pk = PrivateKey()
    return pk.secret, pk.public_key.format()

def CT_sign(privkey, msg_digest, recoverable=False):
    pk = PrivateKey(privkey)
    if recoverable:
        # provides rec_id at end
        sig = pk.sign_recoverable(msg_digest, hasher=None)
        bip137 = sig[-1] + 31
        return bytes([bip137]) + sig[0:64]
    else:
        der = pk.sign(msg_digest, hasher=None)
        return serialize_compact(der_to_cdata(der))

def CT_priv_to_pubkey(priv):
    return PrivateKey(priv).public_key.format()

def CT_bip32_derive(chain_code, master_priv_pub, subkey_path):
    # return pubkey (33 bytes)
    from tapcheck.bip32 import PrvKeyNode, PubKeyNode

    if len(master_priv_pub) == 32:
        # it's actually a private key (from unsealed slot)
        master = PrvKeyNode(chain_code=chain_code, key=master_priv_pub)
    else:
        # load 'm'
        master = PubKeyNode(chain_code=chain_code, key=master_priv_pub)

    node = master.get_extended_pubkey_from_path(subkey_path)

    return node.sec()

# EOF

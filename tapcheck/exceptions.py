#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Exceptions
#
# Anything based on DeviceRejectedError means the card failed a security check
# and should be presented to the user as such, not as a generic error.
#

class TapCheckError(Exception):
    pass

class FramingError(TapCheckError, ValueError):
    # wrong length/type of bytes, found before any crypto is attempted
    pass

class InvalidInputError(TapCheckError, ValueError):
    pass

class PathRangeError(InvalidInputError):
    pass

class MalformedPathError(InvalidInputError):
    pass

class EntropyError(TapCheckError, RuntimeError):
    pass

class WrongDeviceTypeError(TapCheckError, RuntimeError):
    pass

class SignatureRecoveryError(TapCheckError, ValueError):
    pass

class DeviceRejectedError(TapCheckError, RuntimeError):
    pass

class BadAuthSignatureError(DeviceRejectedError):
    pass

class ProofOfPossessionError(DeviceRejectedError):
    pass

class ChainTooShortError(DeviceRejectedError):
    pass

class CounterfeitDeviceError(DeviceRejectedError):
    pass

class CardRuntimeError(TapCheckError, RuntimeError):
    # card replied with an error: numeric code and text
    def __init__(self, msg, code, raw_msg):
        self.code = code
        self.raw_msg = raw_msg
        super().__init__(msg)

# EOF

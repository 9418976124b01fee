SUCCESS = 0
UNSUPPORTED_PROTOCOL = 1003
LOGIN_ERROR = -1501
SESSION_TIMEOUT = 9999

# code -> (name, hint); firmware updates add codes, so lookups fall back to UNKNOWN
ERROR_CODES = {
    -1001: ("UNSPECIFIC_ERROR", "unspecified device error"),
    -1002: ("UNKNOWN_METHOD", "method not supported by this device"),
    -1003: ("JSON_DECODE_FAIL", "device could not decode the request"),
    -1004: ("JSON_ENCODE_FAIL", "device could not encode its response"),
    -1005: ("AES_DECODE_FAIL", "device could not decrypt the request"),
    -1006: ("REQUEST_LEN_ERROR", "request too long"),
    -1008: ("PARAMS_ERROR", "invalid request parameters"),
    -1010: ("INVALID_PUBLIC_KEY", "device rejected the handshake public key"),
    -1301: ("BAD_REQUEST", "device rejected the request"),
    LOGIN_ERROR: ("LOGIN_ERROR", "invalid credentials"),
    1002: ("TRANSPORT_NOT_AVAILABLE", "transport not available"),
    UNSUPPORTED_PROTOCOL: ("UNSUPPORTED_PROTOCOL", "protocol not supported by this firmware"),
    SESSION_TIMEOUT: ("SESSION_TIMEOUT", "session expired"),
}


def describe_error_code(code):
    return ERROR_CODES.get(code, ("UNKNOWN", f"unknown error code {code}"))


class TapoError(Exception):
    pass


class ConfigError(TapoError):
    """Startup configuration is missing or invalid."""


class ConnectError(TapoError):
    """The device could not be reached."""


class ProtocolError(TapoError):
    """The device answered with something we cannot parse."""


class AuthError(TapoError):
    """The device rejected the account credentials."""


class SessionExpired(TapoError):
    """The session is gone and a fresh handshake is required."""


class TapoTimeoutError(TapoError, TimeoutError):
    pass


class DeviceError(TapoError):
    def __init__(self, code, method=None):
        self.code = code
        self.method = method
        self.name, self.hint = describe_error_code(code)
        message = f"device returned error {code} ({self.hint})"
        if method:
            message += f" for {method}"
        super().__init__(message)

    @property
    def known(self):
        return self.code in ERROR_CODES


def raise_for_error_code(code, method=None):
    if code == SUCCESS:
        return
    if code == SESSION_TIMEOUT:
        raise SessionExpired(f"device reported session timeout for {method}")
    if code == LOGIN_ERROR:
        raise AuthError("device rejected the credentials")
    raise DeviceError(code, method)

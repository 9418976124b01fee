import base64
import binascii
import json
from logging import getLogger

from Crypto.Cipher import AES, PKCS1_v1_5
from Crypto.Hash import SHA1
from Crypto.PublicKey import RSA
from Crypto.Util.Padding import pad, unpad

from tapowatt.utils.channel import SecureChannel, new_session, parse_session_cookie
from tapowatt.utils.errors import ProtocolError, raise_for_error_code
from tapowatt.utils.models import CommandRequest, CommandResponse

logger = getLogger("TapoWattLogger")

RSA_KEY_BITS = 1024


def _b64(data):
    return base64.b64encode(data).decode()


class TapoCipher:
    """AES-128-CBC with the fixed key and IV handed out by the handshake."""

    def __init__(self, key, iv):
        self.key = key
        self.iv = iv

    def encrypt(self, text):
        cipher = AES.new(self.key, AES.MODE_CBC, self.iv)
        enc = cipher.encrypt(pad(text.encode(), AES.block_size))
        return _b64(enc)

    def decrypt(self, payload):
        cipher = AES.new(self.key, AES.MODE_CBC, self.iv)
        dec = cipher.decrypt(base64.b64decode(payload))
        return unpad(dec, AES.block_size).decode()


def login_params(credentials):
    username_digest = SHA1.new(credentials.username.encode()).hexdigest()
    return {
        "username": _b64(username_digest.encode()),
        "password": _b64(credentials.password.encode()),
    }


class PassthroughChannel(SecureChannel):
    protocol = "passthrough"
    default_session_timeout = 1440

    async def handshake(self):
        self.session = None

        # step one: send our ephemeral public key
        key_pair = RSA.generate(RSA_KEY_BITS)
        public_pem = key_pair.publickey().export_key("PEM").decode()
        request = CommandRequest("handshake", {"key": public_pem})
        logger.debug(f"passthrough handshake with {self.endpoint.host}")

        status, cookies, body = await self._post("/app", request.to_json())
        if status != 200:
            raise ProtocolError(f"handshake answered with HTTP {status}")

        response = CommandResponse.from_json(body)
        raise_for_error_code(response.error_code, "handshake")
        session_id, timeout = parse_session_cookie(cookies, self.default_session_timeout)

        # step two: the device sealed the session key with our public key
        try:
            sealed = base64.b64decode(response.result["key"])
        except (KeyError, TypeError, binascii.Error) as e:
            raise ProtocolError("handshake response carries no usable key") from e

        try:
            material = PKCS1_v1_5.new(key_pair).decrypt(sealed, None)
        except ValueError as e:
            raise ProtocolError("handshake key material has the wrong size") from e
        if material is None or len(material) != 32:
            raise ProtocolError("cannot decrypt the handshake key material")

        session = new_session(session_id, TapoCipher(material[:16], material[16:32]), timeout)

        # step three: the device checks the account against its stored hash
        login = CommandRequest("login_device", login_params(self.credentials))
        response = await self._exchange(login, session)
        raise_for_error_code(response.error_code, "login_device")

        token = response.result.get("token")
        if not token:
            raise ProtocolError("login response carries no token")

        session.token = token
        self.session = session
        logger.debug(f"passthrough session {session_id} established")
        return session

    async def _exchange(self, request, session):
        cipher = session.cipher
        envelope = {
            "method": "securePassthrough",
            "params": {"request": cipher.encrypt(request.to_json())},
        }
        params = {"token": session.token} if session.token else None

        status, _, body = await self._post(
            "/app", json.dumps(envelope), params=params, session_id=session.session_id
        )
        if status != 200:
            raise ProtocolError(f"{request.method} answered with HTTP {status}")

        outer = CommandResponse.from_json(body)
        raise_for_error_code(outer.error_code, request.method)

        payload = outer.result.get("response")
        if not isinstance(payload, str):
            raise ProtocolError(f"{request.method} response carries no payload")

        try:
            text = cipher.decrypt(payload)
        except (ValueError, binascii.Error) as e:
            raise ProtocolError(f"cannot decrypt {request.method} response") from e

        return CommandResponse.from_json(text)

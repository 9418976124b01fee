import hmac
from dataclasses import dataclass
from logging import getLogger

from Crypto.Cipher import AES
from Crypto.Hash import SHA1, SHA256
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from tapowatt.utils.channel import SecureChannel, new_session, parse_session_cookie
from tapowatt.utils.errors import AuthError, ProtocolError, SessionExpired
from tapowatt.utils.models import CommandResponse

logger = getLogger("TapoWattLogger")

SEED_LENGTH = 16
SIGNATURE_LENGTH = 32

INT32_MAX = 0x7FFFFFFF
INT32_MIN = -0x80000000


def _sha256(data):
    return SHA256.new(data).digest()


def _sha1(data):
    return SHA1.new(data).digest()


def generate_auth_hash(credentials):
    return _sha256(_sha1(credentials.username.encode()) + _sha1(credentials.password.encode()))


def _seq_bytes(seq):
    return seq.to_bytes(4, "big", signed=True)


@dataclass
class HandshakeMaterial:
    local_seed: bytes
    remote_seed: bytes
    auth_hash: bytes

    @property
    def local_hash(self):
        return self.local_seed + self.remote_seed + self.auth_hash

    def server_hash(self):
        return _sha256(self.local_seed + self.remote_seed + self.auth_hash)

    def client_hash(self):
        return _sha256(self.remote_seed + self.local_seed + self.auth_hash)


class KlapCipher:
    """
    Session cipher derived from both seeds and the auth hash.

    Each request advances the sequence number, which becomes the last four
    bytes of the CBC IV and is echoed in the request URL.
    """

    def __init__(self, material):
        local_hash = material.local_hash
        self.key = _sha256(b"lsk" + local_hash)[:16]
        iv = _sha256(b"iv" + local_hash)
        self.iv = iv[:12]
        self.seq = int.from_bytes(iv[-4:], "big", signed=True)
        self.sig = _sha256(b"ldk" + local_hash)[:28]

    def iv_seq(self, seq):
        return self.iv + _seq_bytes(seq)

    def signature(self, seq, ciphertext):
        return _sha256(self.sig + _seq_bytes(seq) + ciphertext)

    def encrypt(self, text):
        self.seq = self.seq + 1 if self.seq < INT32_MAX else INT32_MIN
        cipher = AES.new(self.key, AES.MODE_CBC, self.iv_seq(self.seq))
        ciphertext = cipher.encrypt(pad(text.encode(), AES.block_size))
        return self.signature(self.seq, ciphertext) + ciphertext, self.seq

    def decrypt(self, payload, seq):
        cipher = AES.new(self.key, AES.MODE_CBC, self.iv_seq(seq))
        dec = cipher.decrypt(payload[SIGNATURE_LENGTH:])
        return unpad(dec, AES.block_size).decode()


class KlapChannel(SecureChannel):
    protocol = "klap"
    default_session_timeout = 86400

    async def handshake(self):
        self.session = None
        local_seed = get_random_bytes(SEED_LENGTH)
        auth_hash = generate_auth_hash(self.credentials)
        logger.debug(f"klap handshake with {self.endpoint.host}")

        # step one handshake
        status, cookies, body = await self._post(
            "/app/handshake1", local_seed, content_type="application/octet-stream"
        )
        if status != 200:
            raise ProtocolError(f"handshake1 answered with HTTP {status}")
        if len(body) != SEED_LENGTH + SIGNATURE_LENGTH:
            raise ProtocolError(f"handshake1 answered with {len(body)} bytes")

        material = HandshakeMaterial(local_seed, body[:SEED_LENGTH], auth_hash)
        session_id, timeout = parse_session_cookie(cookies, self.default_session_timeout)

        # the device proves it holds the same credentials hash
        if not hmac.compare_digest(body[SEED_LENGTH:], material.server_hash()):
            raise AuthError("device rejected the credentials")

        # step two handshake
        status, _, _ = await self._post(
            "/app/handshake2",
            material.client_hash(),
            session_id=session_id,
            content_type="application/octet-stream",
        )
        if status != 200:
            raise ProtocolError(f"handshake2 answered with HTTP {status}")

        self.session = new_session(session_id, KlapCipher(material), timeout)
        logger.debug(f"klap session {session_id} established")
        return self.session

    async def _exchange(self, request, session):
        cipher = session.cipher
        payload, seq = cipher.encrypt(request.to_json())

        status, _, body = await self._post(
            "/app/request",
            payload,
            params={"seq": str(seq)},
            session_id=session.session_id,
            content_type="application/octet-stream",
        )
        if status == 403:
            raise SessionExpired(f"device refused {request.method} for this session")
        if status != 200:
            raise ProtocolError(f"{request.method} answered with HTTP {status}")

        try:
            text = cipher.decrypt(body, seq)
        except ValueError as e:
            raise ProtocolError(f"cannot decrypt {request.method} response") from e

        return CommandResponse.from_json(text)

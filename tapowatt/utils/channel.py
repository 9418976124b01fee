import asyncio
import time

import aiohttp

from tapowatt.utils.config import DEFAULT_TIMEOUT
from tapowatt.utils.errors import ConnectError, ProtocolError, SessionExpired, TapoTimeoutError, SESSION_TIMEOUT
from tapowatt.utils.models import Session


SESSION_COOKIE = "TP_SESSIONID"
TIMEOUT_COOKIE = "TIMEOUT"

# keep clear of the device's own expiry
SESSION_EXPIRE_BUFFER = 20 * 60


def parse_session_cookie(set_cookie_headers, default_timeout):
    """
    Pull the session id and its lifetime out of the device's Set-Cookie headers.
    The plug sends "TP_SESSIONID=<id>;TIMEOUT=<seconds>", where TIMEOUT is not
    a standard cookie attribute, so the headers are split by hand.
    """
    values = {}
    for header in set_cookie_headers:
        for part in header.split(";"):
            name, sep, value = part.strip().partition("=")
            if sep:
                values[name.strip()] = value.strip()

    session_id = values.get(SESSION_COOKIE)
    if not session_id:
        raise ProtocolError("device did not issue a session cookie")

    try:
        timeout = int(values[TIMEOUT_COOKIE])
    except (KeyError, ValueError):
        timeout = default_timeout
    if timeout <= 0:
        timeout = default_timeout

    return session_id, timeout


def session_lifetime(timeout):
    return timeout - min(SESSION_EXPIRE_BUFFER, timeout / 4)


def new_session(session_id, cipher, timeout, token=None):
    now = time.monotonic()
    return Session(
        session_id=session_id,
        cipher=cipher,
        expires_at=now + session_lifetime(timeout),
        token=token,
        created_at=now,
    )


class SecureChannel:
    """
    One encrypted session with one plug.

    Subclasses implement the device's fixed handshake and payload encoding.
    Not safe for concurrent use: callers must serialize requests.
    """

    protocol = None
    default_session_timeout = None

    def __init__(self, endpoint, credentials, timeout=DEFAULT_TIMEOUT):
        self.endpoint = endpoint
        self.credentials = credentials
        self.timeout = timeout
        self.session = None

    @property
    def is_established(self):
        return self.session is not None and self.session.is_valid()

    def invalidate(self):
        if self.session is not None:
            self.session.invalidate()

    async def handshake(self):
        raise NotImplementedError

    async def _exchange(self, request, session):
        raise NotImplementedError

    async def send(self, request):
        session = self.session
        if session is None or not session.is_valid():
            raise SessionExpired("no valid session, handshake required")

        try:
            response = await self._exchange(request, session)
        except SessionExpired:
            session.invalidate()
            raise

        if response.error_code == SESSION_TIMEOUT:
            session.invalidate()
            raise SessionExpired(f"device reported session timeout for {request.method}")

        return response

    async def _post(self, path, data, params=None, session_id=None, content_type="application/json"):
        url = self.endpoint.url(path)
        headers = {"Content-Type": content_type}
        if session_id:
            headers["Cookie"] = f"{SESSION_COOKIE}={session_id}"

        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout, cookie_jar=aiohttp.DummyCookieJar()) as http:
                async with http.post(url, data=data, params=params, headers=headers) as resp:
                    body = await resp.read()
                    return resp.status, resp.headers.getall("Set-Cookie", []), body
        except asyncio.TimeoutError as e:
            raise TapoTimeoutError(f"no answer from {self.endpoint.host} within {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise ConnectError(f"cannot reach {self.endpoint.host}: {e}") from e

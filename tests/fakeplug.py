import asyncio
import base64
import json
import secrets

from aiohttp import web
from Crypto.Cipher import AES, PKCS1_v1_5
from Crypto.PublicKey import RSA
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad

from tapowatt.utils.klap import HandshakeMaterial, KlapCipher, generate_auth_hash
from tapowatt.utils.models import Credentials, DeviceEndpoint
from tapowatt.utils.passthrough import TapoCipher, login_params

USERNAME = "plug-owner@example.com"
PASSWORD = "correct horse"

DEVICE_INFO = {
    "device_id": "8022A9C1D5E3F1B2C4D6E8F0A1B3C5D7E9F1A2B4",
    "model": "P115",
    "fw_ver": "1.1.3 Build 231012 Rel.183621",
    "hw_ver": "1.0",
    "nickname": base64.b64encode("Desk plug".encode()).decode(),
    "mac": "AA-BB-CC-DD-EE-FF",
    "ip": "192.168.1.20",
    "on_time": 3600,
    "rssi": -48,
    "signal_level": 3,
}


def klap_seal(cipher, seq, text):
    aes = AES.new(cipher.key, AES.MODE_CBC, cipher.iv_seq(seq))
    ciphertext = aes.encrypt(pad(text.encode(), AES.block_size))
    return cipher.signature(seq, ciphertext) + ciphertext


class FakePlug:
    """In-process plug speaking either securePassthrough or KLAP."""

    def __init__(self, protocol="passthrough", username=USERNAME, password=PASSWORD, cookie_timeout=1440):
        self.protocol = protocol
        self.credentials = Credentials(username, password)
        self.cookie_timeout = cookie_timeout
        self.current_power = 12000
        self.device_on = True
        self.sessions = {}
        self.methods = []
        self.http_calls = 0
        self.handshakes = 0
        # commands still to be answered with a session timeout
        self.session_timeouts = 0
        # error codes to answer the next commands with
        self.command_errors = []
        self.delay = 0
        self.garbage = False
        self.server = None

    @property
    def endpoint(self):
        return DeviceEndpoint(self.server.host, self.server.port)

    def expire_sessions(self):
        self.sessions.clear()

    def app(self):
        app = web.Application()
        app.router.add_post("/app", self.handle_app)
        app.router.add_post("/app/handshake1", self.handle_handshake1)
        app.router.add_post("/app/handshake2", self.handle_handshake2)
        app.router.add_post("/app/request", self.handle_request)
        return app

    def _with_cookie(self, response, session_id):
        response.headers["Set-Cookie"] = f"TP_SESSIONID={session_id};TIMEOUT={self.cookie_timeout}"
        return response

    async def _enter(self):
        self.http_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)

    def dispatch(self, inner):
        method = inner["method"]
        self.methods.append(method)

        if self.session_timeouts:
            self.session_timeouts -= 1
            return {"error_code": 9999}
        if self.command_errors:
            return {"error_code": self.command_errors.pop(0)}

        if method == "get_energy_usage":
            result = {
                "current_power": self.current_power,
                "today_energy": 120,
                "month_energy": 3400,
                "today_runtime": 60,
                "month_runtime": 900,
                "local_time": "2024-01-01 12:00:00",
            }
        elif method == "get_device_info":
            result = dict(DEVICE_INFO, device_on=self.device_on)
        elif method == "set_device_info":
            self.device_on = inner["params"]["device_on"]
            result = {}
        else:
            return {"error_code": -1002}
        return {"error_code": 0, "result": result}

    # ---------------- securePassthrough ----------------

    async def handle_app(self, request):
        await self._enter()
        if self.garbage:
            return web.Response(text="<html>not json</html>")
        if self.protocol != "passthrough":
            return web.json_response({"error_code": 1003})

        body = await request.json()
        if body["method"] == "handshake":
            self.handshakes += 1
            client_key = RSA.import_key(body["params"]["key"])
            secret = get_random_bytes(32)
            session_id = secrets.token_hex(16).upper()
            self.sessions[session_id] = {"cipher": TapoCipher(secret[:16], secret[16:]), "token": None}
            sealed = PKCS1_v1_5.new(client_key).encrypt(secret)
            response = web.json_response({"error_code": 0, "result": {"key": base64.b64encode(sealed).decode()}})
            return self._with_cookie(response, session_id)

        session = self.sessions.get(request.cookies.get("TP_SESSIONID"))
        if body["method"] != "securePassthrough" or session is None:
            return web.json_response({"error_code": 9999})

        cipher = session["cipher"]
        inner = json.loads(cipher.decrypt(body["params"]["request"]))
        if inner["method"] == "login_device":
            if inner["params"] == login_params(self.credentials):
                session["token"] = secrets.token_hex(8)
                reply = {"error_code": 0, "result": {"token": session["token"]}}
            else:
                reply = {"error_code": -1501}
        elif request.query.get("token") != session["token"]:
            reply = {"error_code": 9999}
        else:
            reply = self.dispatch(inner)

        return web.json_response({"error_code": 0, "result": {"response": cipher.encrypt(json.dumps(reply))}})

    # ---------------- KLAP ----------------

    async def handle_handshake1(self, request):
        await self._enter()
        if self.protocol != "klap":
            return web.Response(status=404)

        self.handshakes += 1
        material = HandshakeMaterial(await request.read(), get_random_bytes(16), generate_auth_hash(self.credentials))
        session_id = secrets.token_hex(16).upper()
        self.sessions[session_id] = {"material": material, "cipher": None}
        response = web.Response(body=material.remote_seed + material.server_hash())
        return self._with_cookie(response, session_id)

    async def handle_handshake2(self, request):
        await self._enter()
        session = self.sessions.get(request.cookies.get("TP_SESSIONID"))
        if session is None or await request.read() != session["material"].client_hash():
            return web.Response(status=403)
        session["cipher"] = KlapCipher(session["material"])
        return web.Response()

    async def handle_request(self, request):
        await self._enter()
        session = self.sessions.get(request.cookies.get("TP_SESSIONID"))
        if session is None or session["cipher"] is None:
            return web.Response(status=403)

        cipher = session["cipher"]
        seq = int(request.query["seq"])
        body = await request.read()
        if body[:32] != cipher.signature(seq, body[32:]):
            return web.Response(status=400)

        inner = json.loads(cipher.decrypt(body, seq))
        return web.Response(body=klap_seal(cipher, seq, json.dumps(self.dispatch(inner))))

import asyncio
from datetime import datetime
from enum import Enum
from logging import getLogger

from tapowatt.utils.config import DEFAULT_TIMEOUT, PROTOCOLS
from tapowatt.utils.errors import (
    AuthError,
    DeviceError,
    ProtocolError,
    SessionExpired,
    UNSUPPORTED_PROTOCOL,
    raise_for_error_code,
)
from tapowatt.utils.klap import KlapChannel
from tapowatt.utils.models import (
    CommandRequest,
    Credentials,
    DeviceEndpoint,
    DeviceInfo,
    EnergyUsage,
    PowerSample,
)
from tapowatt.utils.passthrough import PassthroughChannel

logger = getLogger("TapoWattLogger")

CHANNELS = {
    "passthrough": PassthroughChannel,
    "klap": KlapChannel,
}


class DeviceState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    ERROR = "error"


class ApiClient:
    def __init__(self, username, password, timeout=DEFAULT_TIMEOUT, protocol="auto"):
        if protocol not in PROTOCOLS:
            raise ValueError(f"unknown protocol {protocol!r}, expected one of {PROTOCOLS}")
        self.credentials = Credentials(username, password)
        self.timeout = timeout
        self.protocol = protocol

    async def p115(self, host, port=80):
        channel = await self.open_channel(DeviceEndpoint(host, port))
        device = PlugDevice(channel)
        device.state = DeviceState.AUTHENTICATED
        return device

    p110 = p115

    async def open_channel(self, endpoint):
        """Handshake with the plug, picking the protocol its firmware speaks."""
        if self.protocol != "auto":
            channel = CHANNELS[self.protocol](endpoint, self.credentials, self.timeout)
            await channel.handshake()
            return channel

        channel = PassthroughChannel(endpoint, self.credentials, self.timeout)
        try:
            await channel.handshake()
            return channel
        except DeviceError as e:
            if e.code != UNSUPPORTED_PROTOCOL:
                raise
            logger.debug(f"{endpoint.host} does not speak securePassthrough, trying klap")

        channel = KlapChannel(endpoint, self.credentials, self.timeout)
        await channel.handshake()
        return channel


class PlugDevice:
    """
    Typed commands for an energy monitoring plug over one secure channel.

    Requests are serialized; an expired session is renewed once per call.
    """

    def __init__(self, channel):
        self.channel = channel
        self.state = DeviceState.UNAUTHENTICATED
        self._lock = asyncio.Lock()

    async def connect(self):
        async with self._lock:
            await self._connect()

    async def _connect(self):
        try:
            await self.channel.handshake()
        except (AuthError, ProtocolError):
            self.state = DeviceState.ERROR
            raise
        except Exception:
            self.state = DeviceState.UNAUTHENTICATED
            raise
        self.state = DeviceState.AUTHENTICATED

    async def _send(self, request):
        try:
            return await self.channel.send(request)
        except SessionExpired:
            self.state = DeviceState.EXPIRED
            raise
        except (AuthError, ProtocolError):
            self.state = DeviceState.ERROR
            raise

    async def _request(self, method, params=None):
        async with self._lock:
            if self.state is not DeviceState.AUTHENTICATED:
                await self._connect()

            request = CommandRequest(method, params)
            try:
                response = await self._send(request)
            except SessionExpired:
                logger.info(f"session expired during {method}, handshaking again")
                await self._connect()
                response = await self._send(request)

            try:
                raise_for_error_code(response.error_code, method)
            except AuthError:
                # a session the device no longer accepts is never reused
                self.channel.invalidate()
                self.state = DeviceState.ERROR
                raise
            return response.result

    async def get_device_info(self):
        return DeviceInfo.from_dict(await self._request("get_device_info"))

    async def get_energy_usage(self):
        return EnergyUsage.from_dict(await self._request("get_energy_usage"))

    async def get_current_power(self):
        usage = await self.get_energy_usage()
        return PowerSample(usage.current_power, datetime.now())

    async def on(self):
        await self._request("set_device_info", {"device_on": True})

    async def off(self):
        await self._request("set_device_info", {"device_on": False})

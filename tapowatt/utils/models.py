import base64
import binascii
import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from tapowatt.utils.errors import ProtocolError


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self):
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class DeviceEndpoint:
    host: str
    port: int = 80

    def url(self, path):
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port != 80:
            host = f"{host}:{self.port}"
        return f"http://{host}{path}"


@dataclass
class Session:
    """An established device session. Never revived once invalid."""

    session_id: str
    cipher: Any
    expires_at: float
    token: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    invalidated: bool = False

    def is_valid(self):
        return not self.invalidated and time.monotonic() < self.expires_at

    def invalidate(self):
        self.invalidated = True


def _now_mils():
    return int(time.time() * 1000)


@dataclass
class CommandRequest:
    method: str
    params: Optional[dict] = None
    request_time_mils: int = field(default_factory=_now_mils)

    def to_json(self):
        payload = {"method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        payload["requestTimeMils"] = self.request_time_mils
        return json.dumps(payload, separators=(",", ":"))


@dataclass
class CommandResponse:
    error_code: int
    result: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, text):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProtocolError(f"response is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ProtocolError(f"unexpected response envelope: {data!r}")
        code = data.get("error_code")
        if not isinstance(code, int) or isinstance(code, bool):
            raise ProtocolError(f"response has no error_code: {data!r}")
        result = data.get("result")
        return cls(code, result if isinstance(result, dict) else {})


@dataclass
class PowerSample:
    power_mw: int
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def watts(self):
        return self.power_mw / 1000


@dataclass
class EnergyUsage:
    current_power: int
    today_energy: Optional[int] = None
    month_energy: Optional[int] = None
    today_runtime: Optional[int] = None
    month_runtime: Optional[int] = None
    local_time: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        power = data.get("current_power")
        if not isinstance(power, (int, float)) or isinstance(power, bool) or power < 0:
            raise ProtocolError(f"energy usage has no valid current_power: {data!r}")
        return cls(
            current_power=int(power),
            today_energy=data.get("today_energy"),
            month_energy=data.get("month_energy"),
            today_runtime=data.get("today_runtime"),
            month_runtime=data.get("month_runtime"),
            local_time=data.get("local_time"),
        )


def _decode_b64_text(value):
    # nickname and ssid travel base64 encoded
    if not value:
        return value
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


@dataclass
class DeviceInfo:
    device_id: str
    model: str
    nickname: Optional[str] = None
    fw_ver: Optional[str] = None
    hw_ver: Optional[str] = None
    mac: Optional[str] = None
    ip: Optional[str] = None
    device_on: Optional[bool] = None
    on_time: Optional[int] = None
    rssi: Optional[int] = None
    signal_level: Optional[int] = None

    @classmethod
    def from_dict(cls, data):
        if "device_id" not in data or "model" not in data:
            raise ProtocolError(f"device info is missing identity fields: {data!r}")
        return cls(
            device_id=data["device_id"],
            model=data["model"],
            nickname=_decode_b64_text(data.get("nickname")),
            fw_ver=data.get("fw_ver"),
            hw_ver=data.get("hw_ver"),
            mac=data.get("mac"),
            ip=data.get("ip"),
            device_on=data.get("device_on"),
            on_time=data.get("on_time"),
            rssi=data.get("rssi"),
            signal_level=data.get("signal_level"),
        )


@dataclass
class Measurement:
    samples: list
    mean_watts: float
    stddev_watts: float
    min_watts: float
    max_watts: float

from tapowatt.utils.errors import (
    AuthError,
    ConfigError,
    ConnectError,
    DeviceError,
    ProtocolError,
    SessionExpired,
    TapoError,
    TapoTimeoutError,
)
from tapowatt.utils.models import Credentials, DeviceEndpoint, DeviceInfo, EnergyUsage, Measurement, PowerSample
from tapowatt.utils.tapo import ApiClient, DeviceState, PlugDevice

__version__ = "0.1.0"

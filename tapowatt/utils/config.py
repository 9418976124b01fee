import os

from tapowatt.utils.errors import ConfigError
from tapowatt.utils.models import Credentials

USERNAME_ENV = "TAPO_USERNAME"
PASSWORD_ENV = "TAPO_PASSWORD"

# seconds per HTTP round-trip
DEFAULT_TIMEOUT = 5.0

# the plug does not refresh its current power reading faster than this
TAPO_TEMPORAL_RESOLUTION = 1.0

MEASUREMENT_SAMPLE_COUNT = 10

PROTOCOLS = ("auto", "passthrough", "klap")


def load_credentials(environ=None):
    if environ is None:
        environ = os.environ

    missing = [name for name in (USERNAME_ENV, PASSWORD_ENV) if not environ.get(name)]
    if missing:
        raise ConfigError(f"missing environment variable(s): {', '.join(missing)}")

    return Credentials(environ[USERNAME_ENV], environ[PASSWORD_ENV])

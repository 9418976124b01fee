import pytest

from tapowatt.utils.models import Credentials

from fakeplug import PASSWORD, USERNAME, FakePlug


@pytest.fixture
def start_plug(aiohttp_server):
    async def start(**kwargs):
        plug = FakePlug(**kwargs)
        plug.server = await aiohttp_server(plug.app())
        return plug

    return start


@pytest.fixture
def credentials():
    return Credentials(USERNAME, PASSWORD)

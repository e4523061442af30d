import pytest

from ledger_bridge.config import BridgeConfig
from ledger_bridge.device.session import LedgerDevice
from ledger_bridge.provider import LedgerProvider

from .fakes import CHAIN_ID, RPC_URL, FakeConnector, FakeForwarder, FakeLedger, network_responses


@pytest.fixture
def config():
    return BridgeConfig(chain_id=CHAIN_ID, rpc_url=RPC_URL, name="Test Network")


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def connector(ledger):
    return FakeConnector(ledger)


@pytest.fixture
def device(connector):
    return LedgerDevice(connector)


@pytest.fixture
def forwarder():
    return FakeForwarder(network_responses())


@pytest.fixture
def provider(config, device, forwarder):
    return LedgerProvider(config, device, forwarder)

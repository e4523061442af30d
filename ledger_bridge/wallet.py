"""
LedgerWallet: composition root for the bridge.
Owns the device session, the network client and the provider built on them.
"""
import logging
from typing import Optional

import aiohttp

from .config import BridgeConfig
from .device.session import LedgerDevice
from .device.transport import LedgerBlueConnector
from .errors import TransportUnavailable
from .forwarder import NetworkForwarder
from .provider import LedgerProvider

logger = logging.getLogger(__name__)


class LedgerWallet:
    """
    Connects a Ledger over USB and exposes it as a wallet provider.

    The wallet owns exactly one device session. The session stays open
    until ``disconnect()``; a later ``connect()`` or signing request opens
    it again.

    Usage:
        config = BridgeConfig.for_network("sepolia")

        async with LedgerWallet(config) as wallet:
            provider = await wallet.connect()
            accounts = await provider.request({"method": "eth_accounts"})
    """

    def __init__(
        self,
        config: BridgeConfig,
        connector=None,
        http_session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Args:
            config: Network and derivation path for this wallet
            connector: Device connector (defaults to USB HID)
            http_session: Shared aiohttp session for RPC calls (optional)
        """
        self.config = config
        self.connector = connector or LedgerBlueConnector()
        self._http_session = http_session
        self.provider: Optional[LedgerProvider] = None

        self.is_connecting = False
        self.last_error = ""

    @property
    def is_supported(self) -> bool:
        return self.connector.is_supported()

    def _build_provider(self) -> LedgerProvider:
        device = LedgerDevice(self.connector, derivation_path=self.config.derivation_path)
        forwarder = NetworkForwarder(
            self.config.rpc_url,
            timeout=self.config.rpc_timeout,
            session=self._http_session
        )
        return LedgerProvider(self.config, device, forwarder)

    async def connect(self) -> LedgerProvider:
        """
        Open the device session and return the provider.

        Raises:
            TransportUnavailable: No USB HID transport on this platform
            SessionOpenFailed: Device absent, locked or Ethereum app not open
        """
        self.last_error = ""
        if not self.is_supported:
            self.last_error = "USB HID not supported. Install ledger-bridge[ledger]."
            raise TransportUnavailable(self.last_error)

        self.is_connecting = True
        try:
            if self.provider is None:
                self.provider = self._build_provider()
            accounts = await self.provider.request({"method": "eth_requestAccounts"})
            logger.info("Ledger connected: %s on chain %s", accounts[0], self.config.hex_chain_id)
            return self.provider
        except Exception as e:
            self.last_error = str(e) or "Failed to connect Ledger via USB."
            raise
        finally:
            self.is_connecting = False

    async def disconnect(self):
        if self.provider is not None:
            await self.provider.disconnect()
            logger.info("Ledger disconnected")

    @property
    def address(self) -> Optional[str]:
        if self.provider is None or self.provider.device.session is None:
            return None
        return self.provider.device.session.address

    async def __aenter__(self) -> 'LedgerWallet':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    def __repr__(self):
        return f"<LedgerWallet chain={self.config.chain_id} address={self.address}>"

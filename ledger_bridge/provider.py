"""
EIP-1193 style provider backed by the Ledger device.

Callers use ``request({"method": ..., "params": [...]})`` exactly as with
any other wallet provider. Each method is routed through a fixed table:
account and chain queries are answered locally, ``eth_sendTransaction``
and ``personal_sign`` go through the device, reads are forwarded to the
network, everything else is rejected.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import BridgeConfig
from .device.session import LedgerDevice
from .errors import InvalidParams, UnsupportedChain, UnsupportedMethod
from .forwarder import NetworkForwarder
from .signer import MessageSigner, SignatureAssembler
from .transaction import TransactionBuilder
from .utils import parse_quantity

logger = logging.getLogger(__name__)


class Route(Enum):
    ACCOUNTS = "accounts"
    CHAIN_ID = "chain_id"
    SWITCH_CHAIN = "switch_chain"
    SEND_TRANSACTION = "send_transaction"
    PERSONAL_SIGN = "personal_sign"
    FORWARD = "forward"


FORWARDED_METHODS = (
    "eth_blockNumber",
    "eth_call",
    "eth_estimateGas",
    "eth_gasPrice",
    "eth_feeHistory",
    "eth_maxPriorityFeePerGas",
    "eth_getBalance",
    "eth_getCode",
    "eth_getStorageAt",
    "eth_getTransactionCount",
    "eth_getBlockByNumber",
    "eth_getBlockByHash",
    "eth_getTransactionByHash",
    "eth_getTransactionReceipt",
    "eth_getLogs",
    "net_version",
    "web3_clientVersion",
)

DISPATCH_TABLE: Dict[str, Route] = {
    "eth_requestAccounts": Route.ACCOUNTS,
    "eth_accounts": Route.ACCOUNTS,
    "eth_chainId": Route.CHAIN_ID,
    "wallet_switchEthereumChain": Route.SWITCH_CHAIN,
    "eth_sendTransaction": Route.SEND_TRANSACTION,
    "personal_sign": Route.PERSONAL_SIGN,
}
DISPATCH_TABLE.update({method: Route.FORWARD for method in FORWARDED_METHODS})


def classify(method: str) -> Route:
    """
    Raises:
        UnsupportedMethod: ``method`` is not in the dispatch table
    """
    route = DISPATCH_TABLE.get(method)
    if route is None:
        raise UnsupportedMethod(f"Unsupported method: {method}")
    return route


class LedgerProvider:
    """
    Wallet provider for one network, signing on the Ledger.

    Usage:
        provider = LedgerProvider(config, LedgerDevice(), NetworkForwarder(config.rpc_url))
        [address] = await provider.request({"method": "eth_requestAccounts"})
        tx_hash = await provider.request({
            "method": "eth_sendTransaction",
            "params": [{"from": address, "to": "0x...", "value": "0x0"}],
        })
    """

    def __init__(
        self,
        config: BridgeConfig,
        device: LedgerDevice,
        forwarder: NetworkForwarder,
        builder: Optional[TransactionBuilder] = None,
        assembler: Optional[SignatureAssembler] = None,
        message_signer: Optional[MessageSigner] = None
    ):
        self.config = config
        self.device = device
        self.forwarder = forwarder
        self.builder = builder or TransactionBuilder(config.chain_id)
        self.assembler = assembler or SignatureAssembler(forwarder)
        self.message_signer = message_signer or MessageSigner()

        self._handlers: Dict[Route, Callable] = {
            Route.ACCOUNTS: self._accounts,
            Route.CHAIN_ID: self._chain_id,
            Route.SWITCH_CHAIN: self._switch_chain,
            Route.SEND_TRANSACTION: self._send_transaction,
            Route.PERSONAL_SIGN: self._personal_sign,
            Route.FORWARD: self._forward,
        }

    async def request(self, args: Dict[str, Any]) -> Any:
        """
        Handle one provider request.

        Args:
            args: ``{"method": str, "params": list}``; ``params`` may be omitted

        Raises:
            BridgeError: Any failure, with an EIP-1193 ``code``
        """
        if not isinstance(args, dict) or not isinstance(args.get("method"), str):
            raise InvalidParams("request() expects {'method': str, 'params': list}")
        method = args["method"]
        params = args.get("params")
        if params is None:
            params = []
        elif not isinstance(params, (list, tuple)):
            raise InvalidParams(f"{method}: params must be a list")

        route = classify(method)
        logger.debug("%s -> %s", method, route.name)
        return await self._handlers[route](method, list(params))

    # ============================================
    # Handlers
    # ============================================

    async def _accounts(self, method: str, params: List[Any]) -> List[str]:
        return [await self.device.get_address()]

    async def _chain_id(self, method: str, params: List[Any]) -> str:
        return self.config.hex_chain_id

    async def _switch_chain(self, method: str, params: List[Any]) -> None:
        if not params or not isinstance(params[0], dict) or params[0].get("chainId") is None:
            raise InvalidParams("wallet_switchEthereumChain expects [{chainId}]")
        requested = params[0]["chainId"]
        if parse_quantity(requested, "chainId") != self.config.chain_id:
            raise UnsupportedChain(
                f"Ledger USB: chain {requested} not supported (expected {self.config.hex_chain_id})."
            )
        return None

    async def _send_transaction(self, method: str, params: List[Any]) -> str:
        if not params or not isinstance(params[0], dict):
            raise InvalidParams("Missing transaction object.")
        session = await self.device.open()
        unsigned = await self.builder.build(params[0], session, self.forwarder)
        return await self.assembler.sign(unsigned, self.device)

    async def _personal_sign(self, method: str, params: List[Any]) -> str:
        message = params[0] if params else None
        address = params[1] if len(params) > 1 else None
        return await self.message_signer.sign_personal(message, address, self.device)

    async def _forward(self, method: str, params: List[Any]) -> Any:
        return await self.forwarder.call(method, params)

    # ============================================
    # Events and lifecycle
    # ============================================

    def on(self, event: str, listener: Callable) -> 'LedgerProvider':
        """Accepted for compatibility; this provider emits no events."""
        return self

    def remove_listener(self, event: str, listener: Callable) -> 'LedgerProvider':
        return self

    removeListener = remove_listener

    async def disconnect(self):
        """Release the device session and the HTTP client."""
        await self.device.close()
        await self.forwarder.close()

    def __repr__(self):
        return f"<LedgerProvider chain={self.config.hex_chain_id} device={self.device!r}>"

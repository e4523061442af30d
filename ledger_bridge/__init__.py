"""
Ledger Bridge - hardware wallet signer behind a wallet-provider interface

Core modules:
- LedgerDevice: Serialized access to the hardware signing device
- NetworkForwarder: JSON-RPC client for the configured network
- TransactionBuilder: Completes partial transaction requests
- SignatureAssembler / MessageSigner: Device signing pipelines
- LedgerProvider: EIP-1193 style request() facade
- LedgerWallet: Connection and lifecycle management
"""

from .config import BridgeConfig
from .device.session import DeviceSession, LedgerDevice
from .device.transport import (
    DeviceTransport, LedgerBlueConnector, LedgerBlueTransport, ResolutionContext, Signature
)
from .errors import (
    BridgeError, TransportUnavailable, SessionOpenFailed, AddressMismatch, GasEstimationFailed,
    UnsupportedMethod, UnsupportedChain, UserRejectedOnDevice, DeviceError, SigningFailed,
    InvalidParams, RpcError, RpcTimeout
)
from .forwarder import NetworkForwarder
from .transaction import TransactionBuilder, UnsignedTransaction
from .signer import SignatureAssembler, MessageSigner
from .provider import LedgerProvider, Route
from .wallet import LedgerWallet

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "BridgeConfig",

    # Device
    "DeviceSession",
    "LedgerDevice",
    "DeviceTransport",
    "LedgerBlueConnector",
    "LedgerBlueTransport",
    "ResolutionContext",
    "Signature",

    # Errors
    "BridgeError",
    "TransportUnavailable",
    "SessionOpenFailed",
    "AddressMismatch",
    "GasEstimationFailed",
    "UnsupportedMethod",
    "UnsupportedChain",
    "UserRejectedOnDevice",
    "DeviceError",
    "SigningFailed",
    "InvalidParams",
    "RpcError",
    "RpcTimeout",

    # Core Classes
    "NetworkForwarder",
    "TransactionBuilder",
    "UnsignedTransaction",
    "SignatureAssembler",
    "MessageSigner",
    "LedgerProvider",
    "Route",
    "LedgerWallet",
]

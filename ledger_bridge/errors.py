"""
Error taxonomy for the Ledger provider bridge.

Every error raised out of ``LedgerProvider.request`` derives from
``BridgeError`` and carries an EIP-1193 / JSON-RPC numeric ``code`` so that
callers can treat the bridge like any other wallet provider.
"""
from typing import Optional


class BridgeError(Exception):
    code = -32603

    def __init__(self, message: str = "", code: Optional[int] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class TransportUnavailable(BridgeError):
    code = 4900


class SessionOpenFailed(BridgeError):
    code = 4900


class AddressMismatch(BridgeError):
    code = 4100


class GasEstimationFailed(BridgeError):
    pass


class UnsupportedMethod(BridgeError):
    code = 4200


class UnsupportedChain(BridgeError):
    code = 4902


class UserRejectedOnDevice(BridgeError):
    code = 4001


class DeviceError(BridgeError):
    """Device answered with a non-success status word."""

    def __init__(self, message: str, status_word: Optional[int] = None):
        super().__init__(message)
        self.status_word = status_word


class SigningFailed(BridgeError):
    pass


class InvalidParams(BridgeError):
    code = -32602


class RpcError(BridgeError):
    """Upstream JSON-RPC failure (non-2xx status or error payload)."""

    def __init__(
        self,
        method: str,
        message: str,
        status: Optional[int] = None,
        code: Optional[int] = None
    ):
        super().__init__(f"{method}: {message}", code=code)
        self.method = method
        self.status = status


class RpcTimeout(RpcError):
    pass

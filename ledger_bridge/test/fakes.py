"""
In-memory stand-ins for the Ledger and the JSON-RPC node.

FakeLedger signs with a local eth_account key so signatures are real and
recoverable, and records when each device call starts and ends.
"""
import asyncio
import threading
import time

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex, keccak

from ledger_bridge.device.transport import DeviceTransport, ResolutionContext, Signature
from ledger_bridge.errors import RpcError, UserRejectedOnDevice
from ledger_bridge.forwarder import NetworkForwarder

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"
CHAIN_ID = 11155111
RPC_URL = "http://fake-rpc.local"


class FakeLedger(DeviceTransport):

    def __init__(self, key=TEST_KEY, chain_id=CHAIN_ID, delay=0.0, reject=False, signing_key=None):
        self.account = Account.from_key(key)
        self.signer = Account.from_key(signing_key or key)
        self.chain_id = chain_id
        self.delay = delay
        self.reject = reject
        self.calls = []
        self.resolutions = []
        self.closed = False
        self._busy = threading.Lock()

    @property
    def address(self):
        return self.account.address

    def _enter(self, name):
        # a second command while one is in flight is a test failure
        if not self._busy.acquire(blocking=False):
            raise AssertionError(f"{name} issued while another device call was running")
        entry = {"name": name, "start": time.monotonic(), "end": None}
        self.calls.append(entry)
        if self.delay:
            time.sleep(self.delay)
        return entry

    def _exit(self, entry):
        entry["end"] = time.monotonic()
        self._busy.release()

    def calls_named(self, name):
        return [c for c in self.calls if c["name"] == name]

    def get_address(self, path):
        entry = self._enter("get_address")
        try:
            return self.account.address
        finally:
            self._exit(entry)

    def sign_transaction(self, path, raw_tx_hex, resolution: ResolutionContext):
        entry = self._enter("sign_transaction")
        try:
            for name in ("erc20_tokens", "nfts", "external_plugin", "plugin", "domains"):
                iter(getattr(resolution, name))
            self.resolutions.append(resolution)
            if self.reject:
                raise UserRejectedOnDevice("User rejected the request on the device")
            payload = bytes.fromhex(raw_tx_hex)
            signed = self.signer.unsafe_sign_hash(keccak(payload))
            parity = signed.v - 27
            if payload[0] == 0x02:
                v = parity
            else:
                # the device reports only the low byte of the EIP-155 v
                v = (self.chain_id * 2 + 35 + parity) & 0xFF
            return Signature(v=v, r=signed.r.to_bytes(32, "big"), s=signed.s.to_bytes(32, "big"))
        finally:
            self._exit(entry)

    def sign_personal_message(self, path, message_hex):
        entry = self._enter("sign_personal_message")
        try:
            if self.reject:
                raise UserRejectedOnDevice("User rejected the request on the device")
            signed = self.signer.sign_message(encode_defunct(primitive=bytes.fromhex(message_hex)))
            return Signature(v=signed.v, r=signed.r.to_bytes(32, "big"), s=signed.s.to_bytes(32, "big"))
        finally:
            self._exit(entry)

    def close(self):
        self.closed = True


class FakeConnector:

    def __init__(self, transport=None, supported=True, error=None):
        self.transport = transport or FakeLedger()
        self.supported = supported
        self.error = error
        self.connects = 0

    def is_supported(self):
        return self.supported

    def connect(self):
        self.connects += 1
        if self.error is not None:
            raise self.error
        self.transport.closed = False
        return self.transport


class FakeForwarder(NetworkForwarder):
    """
    NetworkForwarder answering from a method -> response table.

    A response may be a value, a callable taking ``params``, or an exception
    instance to raise.
    """

    def __init__(self, responses=None, latency=0.0):
        super().__init__(RPC_URL)
        self.responses = dict(responses or {})
        self.latency = latency
        self.calls = []
        self.closed = False

    async def call(self, method, params=None):
        params = list(params) if params is not None else []
        self.calls.append((method, params))
        await asyncio.sleep(self.latency)
        if method not in self.responses:
            raise RpcError(method, "method not stubbed", status=200, code=-32601)
        response = self.responses[method]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    def methods(self):
        return [method for method, _ in self.calls]

    async def close(self):
        self.closed = True


def broadcast_hash(params):
    return encode_hex(keccak(hexstr=params[0]))


def network_responses(**overrides):
    responses = {
        "eth_getTransactionCount": "0x7",
        "eth_gasPrice": hex(1_000_000_000),
        "eth_estimateGas": hex(21000),
        "eth_sendRawTransaction": broadcast_hash,
    }
    responses.update(overrides)
    return responses


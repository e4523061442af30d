"""
Ledger Ethereum app transport.

Only three device primitives are consumed: derive an address, sign a raw
transaction payload and sign a personal message. ``LedgerBlueTransport``
speaks the Ethereum app APDUs over USB HID through ``ledgerblue``.
"""
import importlib.util
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from eth_utils import to_checksum_address

from ..errors import BridgeError, DeviceError, SessionOpenFailed, TransportUnavailable, UserRejectedOnDevice

logger = logging.getLogger(__name__)

CLA = 0xE0
INS_GET_ADDRESS = 0x02
INS_SIGN_TX = 0x04
INS_SIGN_PERSONAL_MESSAGE = 0x08
INS_PROVIDE_ERC20 = 0x0A
INS_SET_EXTERNAL_PLUGIN = 0x12
INS_PROVIDE_NFT = 0x14
INS_SET_PLUGIN = 0x16

P1_FIRST_CHUNK = 0x00
P1_MORE_CHUNKS = 0x80
MAX_CHUNK = 255

SW_OK = 0x9000
SW_DENIED = 0x6985
SW_LOCKED = (0x5515, 0x6B0C)
SW_WRONG_APP = (0x6D00, 0x6E00, 0x6511)


@dataclass(frozen=True)
class Signature:
    """Raw device signature: 32-byte big-endian r and s plus the device's v."""
    v: int
    r: bytes
    s: bytes

    def to_bytes(self) -> bytes:
        return self.r + self.s + bytes([self.v & 0xFF])

    @classmethod
    def from_response(cls, response: bytes) -> 'Signature':
        if len(response) < 65:
            raise DeviceError(f"Short signature response ({len(response)} bytes)")
        return cls(v=response[0], r=bytes(response[1:33]), s=bytes(response[33:65]))


@dataclass
class ResolutionContext:
    """
    Descriptors the firmware uses to render the approval screen.

    Every field is always a list, possibly empty; some firmware versions
    fail when a field is missing or not iterable.
    """
    erc20_tokens: List[bytes] = field(default_factory=list)
    nfts: List[bytes] = field(default_factory=list)
    external_plugin: List[bytes] = field(default_factory=list)
    plugin: List[bytes] = field(default_factory=list)
    domains: List[bytes] = field(default_factory=list)

    def __post_init__(self):
        for name in ("erc20_tokens", "nfts", "external_plugin", "plugin", "domains"):
            value = getattr(self, name)
            setattr(self, name, list(value) if value is not None else [])


def encode_derivation_path(path: str) -> bytes:
    """Serialize a BIP32 path (``m/`` prefix optional) for the Ethereum app."""
    elements = path[2:].split("/") if path.startswith("m/") else path.split("/")
    if not elements or len(elements) > 10:
        raise ValueError(f"Invalid BIP32 path: {path}")
    result = len(elements).to_bytes(1, "big")
    for elt in elements:
        hardened = elt.endswith("'") or elt.endswith("h")
        index = int(elt[:-1] if hardened else elt)
        if index < 0 or index >= 0x80000000:
            raise ValueError("Invalid index in BIP32 path")
        if hardened:
            index |= 0x80000000
        result += index.to_bytes(4, "big")
    return result


def build_apdus(ins: int, path: str, payload: bytes, length_prefix: bool = False) -> List[bytes]:
    """
    Split a signing payload into APDUs.

    The first chunk carries the derivation path (and, for personal messages,
    the 4-byte payload length).
    """
    head = encode_derivation_path(path)
    if length_prefix:
        head += len(payload).to_bytes(4, "big")
    first_room = MAX_CHUNK - len(head)
    chunks = [head + payload[:first_room]]
    offset = first_room
    while offset < len(payload):
        chunks.append(payload[offset:offset + MAX_CHUNK])
        offset += MAX_CHUNK
    apdus = []
    for i, chunk in enumerate(chunks):
        p1 = P1_FIRST_CHUNK if i == 0 else P1_MORE_CHUNKS
        apdus.append(bytes([CLA, ins, p1, 0x00, len(chunk)]) + chunk)
    return apdus


def error_for_status_word(sw: int, message: str = "") -> BridgeError:
    if sw == SW_DENIED:
        return UserRejectedOnDevice("User rejected the request on the device")
    if sw in SW_LOCKED:
        return SessionOpenFailed("Ledger is locked. Unlock the device and retry")
    if sw in SW_WRONG_APP:
        return SessionOpenFailed("Open the Ethereum app on the Ledger and retry")
    return DeviceError(f"Device error 0x{sw:04x} {message}".strip(), status_word=sw)


class DeviceTransport:
    """Interface of a connected signing device."""

    def get_address(self, path: str) -> str:
        raise NotImplementedError

    def sign_transaction(self, path: str, raw_tx_hex: str, resolution: ResolutionContext) -> Signature:
        raise NotImplementedError

    def sign_personal_message(self, path: str, message_hex: str) -> Signature:
        raise NotImplementedError

    def close(self):
        pass


class LedgerBlueTransport(DeviceTransport):
    """Ethereum app over USB HID (``ledgerblue`` dongle)."""

    def __init__(self, dongle):
        self._dongle = dongle

    def _exchange(self, apdu: bytes) -> bytes:
        from ledgerblue.commException import CommException

        try:
            return bytes(self._dongle.exchange(apdu))
        except CommException as e:
            raise error_for_status_word(e.sw, str(e.message)) from e

    def _exchange_all(self, apdus: Iterable[bytes]) -> bytes:
        response = b""
        for apdu in apdus:
            response = self._exchange(apdu)
        return response

    def get_address(self, path: str) -> str:
        encoded = encode_derivation_path(path)
        response = self._exchange(bytes([CLA, INS_GET_ADDRESS, 0x00, 0x00, len(encoded)]) + encoded)
        pk_len = response[0]
        addr_len = response[1 + pk_len]
        address = response[2 + pk_len:2 + pk_len + addr_len].decode("ascii")
        return to_checksum_address("0x" + address)

    def _provide_resolution(self, resolution: ResolutionContext):
        for ins, descriptors in (
            (INS_SET_EXTERNAL_PLUGIN, resolution.external_plugin),
            (INS_SET_PLUGIN, resolution.plugin),
            (INS_PROVIDE_NFT, resolution.nfts),
            (INS_PROVIDE_ERC20, resolution.erc20_tokens),
        ):
            for descriptor in descriptors:
                self._exchange(bytes([CLA, ins, 0x00, 0x00, len(descriptor)]) + descriptor)
        if resolution.domains:
            logger.debug("Skipping %d domain descriptors", len(resolution.domains))

    def sign_transaction(self, path: str, raw_tx_hex: str, resolution: ResolutionContext) -> Signature:
        self._provide_resolution(resolution)
        payload = bytes.fromhex(raw_tx_hex)
        return Signature.from_response(self._exchange_all(build_apdus(INS_SIGN_TX, path, payload)))

    def sign_personal_message(self, path: str, message_hex: str) -> Signature:
        payload = bytes.fromhex(message_hex)
        apdus = build_apdus(INS_SIGN_PERSONAL_MESSAGE, path, payload, length_prefix=True)
        return Signature.from_response(self._exchange_all(apdus))

    def close(self):
        self._dongle.close()


class LedgerBlueConnector:
    """Opens ``LedgerBlueTransport`` instances."""

    def is_supported(self) -> bool:
        return all(importlib.util.find_spec(name) is not None for name in ("ledgerblue", "hid"))

    def connect(self) -> DeviceTransport:
        if not self.is_supported():
            raise TransportUnavailable("USB HID transport unavailable. pip install ledger-bridge[ledger]")

        from ledgerblue.comm import getDongle
        from ledgerblue.commException import CommException

        try:
            dongle = getDongle(False)
        except (CommException, OSError) as e:
            raise SessionOpenFailed(f"Cannot open Ledger: {e}") from e
        return LedgerBlueTransport(dongle)

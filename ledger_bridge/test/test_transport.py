"""
Tests for the Ledger Ethereum app transport (APDU framing and parsing).
"""
import importlib.util

import pytest
from ledgerblue.commException import CommException

from ledger_bridge.device.transport import (
    INS_PROVIDE_ERC20, INS_SIGN_PERSONAL_MESSAGE, INS_SIGN_TX, LedgerBlueConnector, LedgerBlueTransport,
    ResolutionContext, Signature, build_apdus, encode_derivation_path, error_for_status_word
)
from ledger_bridge.errors import DeviceError, SessionOpenFailed, TransportUnavailable, UserRejectedOnDevice

PATH = "44'/60'/0'/0/0"
ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


class FakeDongle:
    def __init__(self, responses):
        self.responses = list(responses)
        self.apdus = []
        self.closed = False

    def exchange(self, apdu):
        self.apdus.append(bytes(apdu))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return bytearray(response)

    def close(self):
        self.closed = True


def test_encode_derivation_path():
    encoded = encode_derivation_path(PATH)
    assert encoded == bytes.fromhex("05" "8000002c" "8000003c" "80000000" "00000000" "00000000")
    assert encode_derivation_path("m/" + PATH) == encoded
    with pytest.raises(ValueError):
        encode_derivation_path("44'/x")


def test_short_payload_fits_one_apdu():
    [apdu] = build_apdus(INS_SIGN_TX, PATH, b"\xaa" * 10)
    assert apdu[:4] == bytes([0xE0, INS_SIGN_TX, 0x00, 0x00])
    assert apdu[4] == 21 + 10
    assert apdu[5:26] == encode_derivation_path(PATH)


def test_long_payload_is_chunked():
    payload = bytes(range(256)) * 2
    apdus = build_apdus(INS_SIGN_TX, PATH, payload)

    assert [a[2] for a in apdus] == [0x00, 0x80, 0x80]
    assert all(len(a) - 5 <= 255 for a in apdus)
    assert b"".join(a[5:] for a in apdus)[21:] == payload


def test_personal_message_carries_length():
    [apdu] = build_apdus(INS_SIGN_PERSONAL_MESSAGE, PATH, b"hello", length_prefix=True)
    assert apdu[26:30] == (5).to_bytes(4, "big")
    assert apdu[30:] == b"hello"


def test_signature_from_response():
    response = bytes([0x1c]) + b"\x01" * 32 + b"\x02" * 32 + b"\x90\x00"
    sig = Signature.from_response(response)
    assert sig.v == 0x1c
    assert sig.r == b"\x01" * 32
    assert sig.to_bytes() == b"\x01" * 32 + b"\x02" * 32 + b"\x1c"
    with pytest.raises(DeviceError):
        Signature.from_response(b"\x00" * 10)


def test_resolution_context_fields_are_lists():
    resolution = ResolutionContext(erc20_tokens=None, nfts=(b"\x01",))
    assert resolution.erc20_tokens == []
    assert resolution.nfts == [b"\x01"]
    assert resolution.domains == []


def test_status_words():
    assert isinstance(error_for_status_word(0x6985), UserRejectedOnDevice)
    assert isinstance(error_for_status_word(0x6B0C), SessionOpenFailed)
    assert isinstance(error_for_status_word(0x6E00), SessionOpenFailed)
    error = error_for_status_word(0x6A80)
    assert isinstance(error, DeviceError)
    assert error.status_word == 0x6A80


def test_connector_reports_missing_transport(monkeypatch):
    monkeypatch.setattr(importlib.util, "find_spec", lambda name: None)
    connector = LedgerBlueConnector()

    assert connector.is_supported() is False
    with pytest.raises(TransportUnavailable):
        connector.connect()


def test_get_address_parses_response():
    response = bytes([65]) + b"\x04" * 65 + bytes([40]) + ADDRESS[2:].lower().encode("ascii")
    dongle = FakeDongle([response])

    assert LedgerBlueTransport(dongle).get_address(PATH) == ADDRESS
    assert dongle.apdus[0][:2] == bytes([0xE0, 0x02])


def test_sign_transaction_sends_resolution_then_chunks():
    signature = bytes([0x01]) + b"\x11" * 32 + b"\x22" * 32
    dongle = FakeDongle([b"", b"", signature])
    payload = b"\x02" + b"\x00" * 300

    sig = LedgerBlueTransport(dongle).sign_transaction(
        PATH, payload.hex(), ResolutionContext(erc20_tokens=[b"\xaa\xbb"])
    )

    assert dongle.apdus[0][:2] == bytes([0xE0, INS_PROVIDE_ERC20])
    assert [a[2] for a in dongle.apdus[1:]] == [0x00, 0x80]
    assert sig == Signature(v=1, r=b"\x11" * 32, s=b"\x22" * 32)


def test_user_rejection_maps_status_word():
    dongle = FakeDongle([CommException("denied", 0x6985)])

    with pytest.raises(UserRejectedOnDevice):
        LedgerBlueTransport(dongle).sign_personal_message(PATH, b"hi".hex())

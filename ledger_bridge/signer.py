"""
Signing pipelines on top of the device session.

SignatureAssembler: unsigned transaction -> device signature -> signed raw
transaction -> broadcast.
MessageSigner: personal_sign.
"""
import logging
from typing import Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex
from web3 import Web3

from .device.session import LedgerDevice
from .device.transport import ResolutionContext, Signature
from .errors import AddressMismatch, SigningFailed
from .transaction import UnsignedTransaction
from .utils import parse_data, same_address, strip_hex_prefix

logger = logging.getLogger(__name__)


def recovery_parity(signature: Signature, unsigned: UnsignedTransaction) -> int:
    """
    Map the device's ``v`` to a y-parity bit.

    Typed transactions come back as 0/1 (or 27/28). Legacy ones carry the
    EIP-155 value, which older apps truncate to its low byte.
    """
    v = signature.v
    if unsigned.is_fee_market:
        parity = v - 27 if v in (27, 28) else v
    else:
        parity = (v - (unsigned.chain_id * 2 + 35)) % 256
    if parity not in (0, 1):
        raise SigningFailed(f"Unexpected signature v={v} from device")
    return parity


class SignatureAssembler:
    """Signs an UnsignedTransaction on the device and broadcasts it."""

    def __init__(self, forwarder):
        self.forwarder = forwarder

    def assemble(self, unsigned: UnsignedTransaction, signature: Signature, expected_signer: str) -> str:
        """
        Combine the unsigned payload with the device signature.

        Returns:
            ``0x``-prefixed signed raw transaction

        Raises:
            SigningFailed: The result does not recover to ``expected_signer``
        """
        parity = recovery_parity(signature, unsigned)
        signed = encode_hex(unsigned.signed_serialized(
            parity,
            int.from_bytes(signature.r, "big"),
            int.from_bytes(signature.s, "big")
        ))
        try:
            signer = Account.recover_transaction(signed)
        except Exception as e:
            raise SigningFailed(f"Signed transaction cannot be decoded: {e}") from e
        if not same_address(signer, expected_signer):
            raise SigningFailed(f"Signature recovers to {signer}, expected {expected_signer}. Refusing to broadcast.")
        return signed

    async def sign(self, unsigned: UnsignedTransaction, device: LedgerDevice) -> str:
        """
        Sign on the device, broadcast, return the transaction hash.

        Never retried: a failure anywhere after the device call surfaces to
        the caller.
        """
        session = await device.open()
        raw_tx_hex = strip_hex_prefix(encode_hex(unsigned.unsigned_serialized()))
        signature = await device.sign_transaction(raw_tx_hex, ResolutionContext())
        signed = self.assemble(unsigned, signature, session.address)

        local_hash = encode_hex(Web3.keccak(hexstr=signed))
        tx_hash = await self.forwarder.send_raw_transaction(signed)
        if tx_hash and tx_hash.lower() != local_hash:
            logger.warning("Node returned hash %s, computed %s", tx_hash, local_hash)
        logger.info("Broadcast type-%d transaction %s", unsigned.tx_type, tx_hash)
        return tx_hash


def normalize_message(message: Union[str, bytes, None]) -> bytes:
    """``0x`` strings are raw bytes; anything else is UTF-8 text."""
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)
    text = "" if message is None else str(message)
    if text.startswith("0x"):
        return parse_data(text, "message")
    return text.encode("utf-8")


class MessageSigner:
    """personal_sign on the device."""

    async def sign_personal(
        self,
        message: Union[str, bytes, None],
        expected_address: Optional[str],
        device: LedgerDevice
    ) -> str:
        """
        Returns:
            65-byte ``r || s || v`` signature as a hex string

        Raises:
            AddressMismatch: ``expected_address`` is not the device address
                (raised before any signing request reaches the device)
        """
        session = await device.open()
        if expected_address and not same_address(str(expected_address), session.address):
            raise AddressMismatch("personal_sign address mismatch")

        payload = normalize_message(message)
        signature = await device.sign_personal_message(payload.hex())
        signed = signature.to_bytes()

        try:
            signer = Account.recover_message(encode_defunct(primitive=payload), signature=signed)
        except Exception as e:
            raise SigningFailed(f"Device returned an unusable signature: {e}") from e
        if not same_address(signer, session.address):
            raise SigningFailed(f"Signature recovers to {signer}, expected {session.address}")
        return encode_hex(signed)


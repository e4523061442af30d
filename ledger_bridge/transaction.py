"""
Transaction building for the hardware signer.

Turns a partial ``eth_sendTransaction`` request into a complete unsigned
transaction: resolves the nonce, picks legacy vs fee-market from the fee
fields the caller supplied, and makes sure the gas limit is never zero.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import rlp
from eth_utils import decode_hex, encode_hex
from hexbytes import HexBytes
from web3 import Web3

from .device.session import DeviceSession
from .errors import AddressMismatch, GasEstimationFailed, InvalidParams, RpcError, UnsupportedChain
from .utils import parse_address, parse_data, parse_quantity, same_address, to_quantity

logger = logging.getLogger(__name__)

LEGACY_TX_TYPE = 0
FEE_MARKET_TX_TYPE = 2

DEFAULT_PRIORITY_FEE = Web3.to_wei(1, "gwei")
GAS_FLOOR = 10_000


def apply_gas_margin(estimate: int) -> int:
    """ceil(estimate * 1.2) + 10000, in integer arithmetic."""
    return (estimate * 6 + 4) // 5 + GAS_FLOOR


@dataclass(frozen=True)
class UnsignedTransaction:
    """
    Complete transaction ready for the device.

    ``gas_price`` is set for legacy transactions, the two EIP-1559 fields for
    fee-market transactions. ``to=None`` is a contract creation.
    """
    chain_id: int
    nonce: int
    gas_limit: int
    to: Optional[str]
    value: int
    data: bytes
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    def __post_init__(self):
        if self.gas_limit <= 0:
            raise ValueError("gas limit must be positive")
        if (self.gas_price is None) == (self.max_fee_per_gas is None):
            raise ValueError("exactly one of gas_price / max_fee_per_gas must be set")

    @property
    def tx_type(self) -> int:
        return FEE_MARKET_TX_TYPE if self.max_fee_per_gas is not None else LEGACY_TX_TYPE

    @property
    def is_fee_market(self) -> bool:
        return self.tx_type == FEE_MARKET_TX_TYPE

    def _to_bytes(self) -> bytes:
        return decode_hex(self.to) if self.to else b""

    def _fields(self) -> List[Any]:
        if self.is_fee_market:
            return [
                self.chain_id, self.nonce, self.max_priority_fee_per_gas, self.max_fee_per_gas,
                self.gas_limit, self._to_bytes(), self.value, self.data, [],
            ]
        return [self.nonce, self.gas_price, self.gas_limit, self._to_bytes(), self.value, self.data]

    def unsigned_serialized(self) -> HexBytes:
        """Payload the device signs (EIP-155 for legacy, EIP-2718 envelope for type 2)."""
        if self.is_fee_market:
            return HexBytes(bytes([FEE_MARKET_TX_TYPE]) + rlp.encode(self._fields()))
        return HexBytes(rlp.encode(self._fields() + [self.chain_id, 0, 0]))

    def signed_serialized(self, y_parity: int, r: int, s: int) -> HexBytes:
        if self.is_fee_market:
            return HexBytes(bytes([FEE_MARKET_TX_TYPE]) + rlp.encode(self._fields() + [y_parity, r, s]))
        v = self.chain_id * 2 + 35 + y_parity
        return HexBytes(rlp.encode(self._fields() + [v, r, s]))

    def to_rpc_dict(self) -> Dict[str, Any]:
        """JSON-RPC shaped view (hex quantities)."""
        tx = {
            "type": to_quantity(self.tx_type),
            "chainId": to_quantity(self.chain_id),
            "nonce": to_quantity(self.nonce),
            "gas": to_quantity(self.gas_limit),
            "value": to_quantity(self.value),
            "data": encode_hex(self.data),
        }
        if self.to:
            tx["to"] = self.to
        if self.is_fee_market:
            tx["maxFeePerGas"] = to_quantity(self.max_fee_per_gas)
            tx["maxPriorityFeePerGas"] = to_quantity(self.max_priority_fee_per_gas)
        else:
            tx["gasPrice"] = to_quantity(self.gas_price)
        return tx

    def as_dict(self) -> Dict[str, Any]:
        """``eth_account`` transaction dict with int fields."""
        tx = {
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "value": self.value,
            "data": self.data,
        }
        if self.to:
            tx["to"] = self.to
        if self.is_fee_market:
            tx.update({
                "type": FEE_MARKET_TX_TYPE,
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
                "accessList": [],
            })
        else:
            tx["gasPrice"] = self.gas_price
        return tx


class TransactionBuilder:
    """
    Completes partial transaction requests for one chain.

    Usage:
        builder = TransactionBuilder(chain_id=11155111)
        unsigned = await builder.build({"to": "0x...", "value": "0x0"}, session, forwarder)
    """

    def __init__(self, chain_id: int):
        self.chain_id = chain_id

    async def build(self, partial: Dict[str, Any], session: DeviceSession, forwarder) -> UnsignedTransaction:
        """
        Build a complete unsigned transaction.

        Args:
            partial: ``eth_sendTransaction`` parameter object
            session: Open device session (source of the sender address)
            forwarder: NetworkForwarder for nonce / fee / gas lookups

        Returns:
            UnsignedTransaction

        Raises:
            AddressMismatch: ``from`` is not the device address
            UnsupportedChain: ``chainId`` is not the configured chain
            GasEstimationFailed: No usable gas limit could be obtained
            InvalidParams: Malformed fields
        """
        if not isinstance(partial, dict):
            raise InvalidParams("Missing transaction object.")

        sender = partial.get("from")
        if sender is not None and not same_address(str(sender), session.address):
            raise AddressMismatch(f"tx.from must be the Ledger address ({session.address})")

        chain_id = parse_quantity(partial.get("chainId"), "chainId")
        if chain_id is not None and chain_id != self.chain_id:
            raise UnsupportedChain(f"chain {hex(chain_id)} not supported (expected {hex(self.chain_id)})")

        to = parse_address(partial["to"], "to") if partial.get("to") else None
        data = parse_data(partial["data"] if partial.get("data") is not None else partial.get("input"))
        value = parse_quantity(partial.get("value"), "value") or 0
        nonce = parse_quantity(partial.get("nonce"), "nonce")
        gas_price = parse_quantity(partial.get("gasPrice"), "gasPrice")
        max_fee = parse_quantity(partial.get("maxFeePerGas"), "maxFeePerGas")
        max_priority_fee = parse_quantity(partial.get("maxPriorityFeePerGas"), "maxPriorityFeePerGas")
        gas = parse_quantity(partial.get("gas"), "gas")
        gas_limit_field = parse_quantity(partial.get("gasLimit"), "gasLimit")
        amounts = {
            "value": value, "nonce": nonce, "gas": gas, "gasLimit": gas_limit_field, "gasPrice": gas_price,
            "maxFeePerGas": max_fee, "maxPriorityFeePerGas": max_priority_fee,
        }
        for name, amount in amounts.items():
            if amount is not None and amount < 0:
                raise InvalidParams(f"Invalid {name}: {amount}")
        # a zero "gas" does not hide a usable "gasLimit"
        gas_limit = gas or gas_limit_field

        if nonce is None:
            nonce = await forwarder.get_transaction_count(session.address, "pending")

        if max_fee is not None or max_priority_fee is not None:
            if max_fee is None:
                base = gas_price if gas_price is not None else await forwarder.gas_price()
                max_fee = max(base, max_priority_fee)
            elif max_priority_fee is None:
                max_priority_fee = min(DEFAULT_PRIORITY_FEE, max_fee)
            elif max_priority_fee > max_fee:
                raise InvalidParams("maxPriorityFeePerGas cannot exceed maxFeePerGas")
            gas_price = None
        elif gas_price is None:
            gas_price = await forwarder.gas_price()

        if not gas_limit:
            fee_context = (
                {"maxFeePerGas": to_quantity(max_fee), "maxPriorityFeePerGas": to_quantity(max_priority_fee)}
                if gas_price is None else {"gasPrice": to_quantity(gas_price)}
            )
            gas_limit = await self._estimate_gas(session.address, to, data, value, fee_context, forwarder)

        unsigned = UnsignedTransaction(
            chain_id=self.chain_id,
            nonce=nonce,
            gas_limit=gas_limit,
            to=to,
            value=value,
            data=data,
            gas_price=gas_price,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=max_priority_fee if max_fee is not None else None
        )
        logger.info(
            "Built type-%d transaction nonce=%d gas=%d to=%s",
            unsigned.tx_type, unsigned.nonce, unsigned.gas_limit, unsigned.to or "<create>"
        )
        return unsigned

    async def _estimate_gas(self, sender, to, data, value, fee_context, forwarder) -> int:
        request = {"from": sender, "data": encode_hex(data), "value": to_quantity(value)}
        if to:
            request["to"] = to
        request.update(fee_context)
        try:
            estimate = await forwarder.estimate_gas(request, "pending")
        except (RpcError, InvalidParams) as e:
            raise GasEstimationFailed(f"eth_estimateGas failed: {e}") from e
        if not estimate or estimate <= 0:
            raise GasEstimationFailed(
                "eth_estimateGas returned 0; RPC cannot estimate this tx. Try another RPC or provide gasLimit."
            )
        return apply_gas_margin(estimate)

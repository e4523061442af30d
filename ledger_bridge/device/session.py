"""
Device session: the single owner of the hardware transport.

The device can only process one command at a time. Every device operation
goes through ``LedgerDevice._run``, which queues on a FIFO lock and executes
the blocking transport call on a dedicated worker thread.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import DEFAULT_DERIVATION_PATH
from ..errors import BridgeError, SessionOpenFailed, TransportUnavailable
from .transport import DeviceTransport, LedgerBlueConnector, ResolutionContext, Signature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceSession:
    """Open transport plus the address derived from ``derivation_path``."""
    transport: DeviceTransport
    derivation_path: str
    address: str


class LedgerDevice:
    """
    Lazily opened, explicitly closed device session.

    Usage:
        device = LedgerDevice()
        address = await device.get_address()
        signature = await device.sign_personal_message("68656c6c6f")
        await device.close()
    """

    def __init__(self, connector=None, derivation_path: str = DEFAULT_DERIVATION_PATH):
        """
        Args:
            connector: Object with ``is_supported()`` and ``connect()``
                (defaults to the USB HID connector)
            derivation_path: BIP32 path of the signing key
        """
        self.connector = connector or LedgerBlueConnector()
        self.derivation_path = derivation_path
        self._session: Optional[DeviceSession] = None
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[DeviceSession]:
        return self._session

    # ============================================
    # Serialized execution
    # ============================================

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        """
        Run one device operation after all previously issued ones.

        The lock is released when the device call finishes, not when the
        awaiting task goes away: a cancelled caller leaves the operation
        running and later callers keep waiting for it.
        """
        await self._lock.acquire()
        try:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger")
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(self._executor, functools.partial(fn, *args))
        except BaseException:
            self._lock.release()
            raise
        name = getattr(fn, "__name__", repr(fn))
        future.add_done_callback(functools.partial(self._on_done, name))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            logger.warning("Caller stopped waiting for %s; device operation still pending", name)
            raise

    def _on_done(self, name: str, future: asyncio.Future):
        self._lock.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.debug("Device operation %s failed: %s", name, exc)

    # ============================================
    # Session lifecycle
    # ============================================

    def _connect(self) -> DeviceSession:
        if self._session is not None:
            return self._session
        try:
            transport = self.connector.connect()
        except BridgeError:
            raise
        except Exception as e:
            raise SessionOpenFailed(f"Cannot open Ledger: {e}") from e
        try:
            address = transport.get_address(self.derivation_path)
        except BridgeError:
            transport.close()
            raise
        except Exception as e:
            transport.close()
            raise SessionOpenFailed(f"Cannot derive address: {e}") from e
        self._session = DeviceSession(
            transport=transport,
            derivation_path=self.derivation_path,
            address=address
        )
        logger.info("Ledger session opened for %s (%s)", address, self.derivation_path)
        return self._session

    async def open(self) -> DeviceSession:
        """
        Open the session, or return the cached one.

        Raises:
            TransportUnavailable: The platform lacks the device transport
            SessionOpenFailed: Device absent, locked or wrong app open
        """
        if self._session is not None:
            return self._session
        self._check_supported()
        return await self._run(self._connect)

    async def get_address(self) -> str:
        return (await self.open()).address

    def _close(self):
        session, self._session = self._session, None
        if session is not None:
            session.transport.close()
            logger.info("Ledger session closed for %s", session.address)

    async def close(self):
        """Wait for in-flight device work, then release the transport."""
        if self._executor is None:
            return
        try:
            await self._run(self._close)
        finally:
            executor, self._executor = self._executor, None
            if executor is not None:
                executor.shutdown(wait=False)

    # ============================================
    # Signing primitives
    # ============================================

    def _check_supported(self):
        if not self.connector.is_supported():
            raise TransportUnavailable("Hardware transport is not available on this platform")

    def _sign_transaction(self, raw_tx_hex: str, resolution: ResolutionContext) -> Signature:
        session = self._connect()
        return session.transport.sign_transaction(session.derivation_path, raw_tx_hex, resolution)

    def _sign_personal_message(self, message_hex: str) -> Signature:
        session = self._connect()
        return session.transport.sign_personal_message(session.derivation_path, message_hex)

    async def sign_transaction(self, raw_tx_hex: str, resolution: ResolutionContext) -> Signature:
        """Sign an unsigned serialized transaction (hex, no prefix)."""
        self._check_supported()
        return await self._run(self._sign_transaction, raw_tx_hex, resolution)

    async def sign_personal_message(self, message_hex: str) -> Signature:
        self._check_supported()
        return await self._run(self._sign_personal_message, message_hex)

    def __repr__(self):
        address = self._session.address if self._session else None
        return f"<LedgerDevice path={self.derivation_path} address={address}>"

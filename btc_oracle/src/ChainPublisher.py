"""ChainPublisher: Pushes an approved price to the on-chain oracle."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ContractUtility import ContractUtility

logger = logging.getLogger(__name__)


class ChainPublishError(Exception):
    """Raised when a price could not be published on-chain.

    :ivar txid: Hash of the transaction if it was sent, else None.
    """

    def __init__(self, message: str, txid: str | None = None):
        super().__init__(message)
        self.txid = txid


@dataclass(frozen=True)
class PublishResult:
    """Outcome of a successful publish.

    :ivar txid: Transaction hash, 0x-prefixed.
    """

    txid: str


class ChainPublisher(ABC):
    """Interface for anything that can publish a satoshi-scaled price."""

    @abstractmethod
    async def publish(self, price_in_satoshis: int) -> PublishResult:
        """Publish the price.

        :param price_in_satoshis: Price times 10**8.
        :returns: PublishResult with the transaction id.
        :raises ChainPublishError: If the price was not published.
        """
        pass


class ContractPublisher(ChainPublisher):
    """Publishes through the oracle contract's ``setAggregatedPrice``.

    :ivar contract_utility: Web3 connection and signer.
    :ivar contract: Oracle contract handle.
    :ivar receipt_timeout: Seconds to wait for the transaction receipt.
    """

    def __init__(
        self,
        contract_utility: ContractUtility,
        oracle_address: str,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.contract_utility = contract_utility
        self.w3 = contract_utility.w3
        self.contract = contract_utility.get_oracle_contract(oracle_address)
        self.receipt_timeout = receipt_timeout

    async def publish(self, price_in_satoshis: int) -> PublishResult:
        # web3 calls block, so keep them off the event loop
        return await asyncio.to_thread(self._publish_sync, price_in_satoshis)

    def _publish_sync(self, price_in_satoshis: int) -> PublishResult:
        if price_in_satoshis <= 0:
            raise ChainPublishError(f"Refusing to publish price {price_in_satoshis}")
        try:
            tx_params = self.contract.functions.setAggregatedPrice(
                price_in_satoshis
            ).build_transaction({"gasPrice": self.w3.eth.gas_price})
            tx_hash = self.w3.eth.send_transaction(tx_params)
        except Exception as e:
            raise ChainPublishError(f"setAggregatedPrice failed: {e}") from e

        txid = tx_hash.to_0x_hex()
        try:
            tx_receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except Exception as e:
            raise ChainPublishError(
                f"No receipt for transaction {txid}: {e}", txid=txid
            ) from e

        if tx_receipt["status"] != 1:
            raise ChainPublishError(f"Transaction {txid} reverted", txid=txid)

        logger.info(f"Published price {price_in_satoshis} in {txid}")
        return PublishResult(txid=txid)

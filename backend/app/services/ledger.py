"""
Ledger access: payer balance, batch-payer submission and receipts.

ArcLedger talks to an EVM JSON-RPC node with web3.py and signs locally with the
payer key. It is built once per process (see app.dependencies) and shared.
Stablecoin amounts cross this boundary as integers in USDC base units
(6 decimals); conversion from dollar floats happens in to_base_units only.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from app.services.errors import NotConfigured

logger = logging.getLogger(__name__)

USDC_DECIMALS = 6
_USDC_SCALE = Decimal(10) ** USDC_DECIMALS

BATCH_PAYER_ABI = [
    {
        "name": "batchPay",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "recipients", "type": "address[]"},
            {"name": "amounts", "type": "uint256[]"},
        ],
        "outputs": [],
    },
    {
        "name": "owner",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

ERC20_BALANCE_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# gas budget per batch: fixed overhead plus one transfer per recipient
BASE_GAS = 500_000
GAS_PER_RECIPIENT = 100_000


def to_base_units(amount: float) -> int:
    return int((Decimal(str(amount)) * _USDC_SCALE).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_base_units(units: int) -> float:
    return float(Decimal(units) / _USDC_SCALE)


def is_address(value) -> bool:
    return isinstance(value, str) and value.startswith("0x") and Web3.is_address(value)


class LedgerError(Exception):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class LedgerRejected(LedgerError):
    """The node refused the transaction; nothing was broadcast."""


class LedgerUnreachable(LedgerError):
    """Transport failed; a signed transaction may or may not have been broadcast."""


class ReceiptTimeout(LedgerError):
    """No receipt within the bounded wait; the transaction may still be mined."""


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class Ledger:
    """Interface the payroll workflow depends on."""

    payer_address: str = ""

    @property
    def has_batch_payer(self) -> bool:
        raise NotImplementedError

    def get_stablecoin_balance(self) -> int:
        raise NotImplementedError

    def submit_batch_pay(self, recipients: list[str], amounts: list[int], total: int) -> str:
        raise NotImplementedError

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        raise NotImplementedError

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        raise NotImplementedError


def _receipt(tx_hash: str, raw) -> TxReceipt:
    return TxReceipt(
        tx_hash=tx_hash,
        status=int(raw["status"]),
        block_number=int(raw["blockNumber"]),
        gas_used=int(raw["gasUsed"]),
    )


class ArcLedger(Ledger):
    def __init__(
        self,
        rpc_url: Optional[str],
        private_key: Optional[str],
        usdc_address: Optional[str],
        batch_payer_address: Optional[str] = None,
        chain_id: Optional[int] = None,
        w3: Optional[Web3] = None,
    ):
        missing = [
            name for name, value in (
                ("ARC_RPC_URL", rpc_url),
                ("ETHER_PRIVATE_KEY", private_key),
                ("USDC_CONTRACT_ADDRESS", usdc_address),
            ) if not value
        ]
        if missing:
            raise NotConfigured(f"Ledger not configured. Set {', '.join(missing)}.")

        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.chain_id = chain_id
        self._account = self.w3.eth.account.from_key(private_key)
        self.payer_address = self._account.address

        self.usdc = self.w3.eth.contract(address=Web3.to_checksum_address(usdc_address), abi=ERC20_BALANCE_ABI)
        self.batch_payer = None
        if batch_payer_address:
            self.batch_payer = self.w3.eth.contract(
                address=Web3.to_checksum_address(batch_payer_address),
                abi=BATCH_PAYER_ABI,
            )

    @property
    def has_batch_payer(self) -> bool:
        return self.batch_payer is not None

    def get_stablecoin_balance(self) -> int:
        try:
            return int(self.usdc.functions.balanceOf(self.payer_address).call())
        except (Web3Exception, ValueError, requests.RequestException) as e:
            raise LedgerError(f"Could not read USDC balance: {e}")

    def submit_batch_pay(self, recipients: list[str], amounts: list[int], total: int) -> str:
        if self.batch_payer is None:
            raise NotConfigured("BatchPayer contract not deployed. Set BATCH_PAYER_ADDRESS.")

        try:
            tx_params = {
                "from": self.payer_address,
                "value": total,
                "gas": BASE_GAS + len(recipients) * GAS_PER_RECIPIENT,
                "nonce": self.w3.eth.get_transaction_count(self.payer_address, "pending"),
            }
            if self.chain_id is not None:
                tx_params["chainId"] = self.chain_id
            tx = self.batch_payer.functions.batchPay(
                [Web3.to_checksum_address(a) for a in recipients],
                amounts,
            ).build_transaction(tx_params)
            signed = self._account.sign_transaction(tx)
        except requests.RequestException as e:
            # nothing signed or sent yet
            raise LedgerRejected(f"Ledger unreachable while preparing transaction: {e}")
        except (Web3Exception, ValueError) as e:
            raise LedgerRejected(f"Could not build batchPay transaction: {e}")

        tx_hash = Web3.to_hex(signed.hash)
        try:
            self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except requests.RequestException as e:
            raise LedgerUnreachable(f"Ledger unreachable while broadcasting: {e}", tx_hash=tx_hash)
        except (Web3Exception, ValueError) as e:
            raise LedgerRejected(f"Transaction rejected: {e}", tx_hash=tx_hash)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            raw = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=2)
        except TimeExhausted:
            raise ReceiptTimeout(f"No receipt after {timeout:.0f}s", tx_hash=tx_hash)
        except requests.RequestException as e:
            raise ReceiptTimeout(f"Ledger unreachable while waiting for receipt: {e}", tx_hash=tx_hash)
        except (Web3Exception, ValueError) as e:
            # broadcast already happened; outcome unknown
            raise ReceiptTimeout(f"Could not read receipt: {e}", tx_hash=tx_hash)
        return _receipt(tx_hash, raw)

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        try:
            raw = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (Web3Exception, ValueError, requests.RequestException) as e:
            raise LedgerError(f"Could not read receipt for {tx_hash}: {e}", tx_hash=tx_hash)
        return _receipt(tx_hash, raw)

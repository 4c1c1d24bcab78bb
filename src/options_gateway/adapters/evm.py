"""
EVM adapter for the options chain (Arbitrum).

Transactions are signed locally with the gateway wallet and sent as raw
transactions. Nonces are allocated under a lock so concurrent batch items
never reuse one.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3

from ..core.signing import typed_values
from ..types import ChainConfig, PoolKey, TokenType, TransactionResult, TransactionStatus
from ..utils import normalize_address, validate_address
from .abis import ABI_BY_METHOD, ERC20_ABI, POOL_ABI, POOL_FACTORY_ABI

logger = logging.getLogger(__name__)

RECEIPT_TIMEOUT_SECONDS = 180
BLOCK_POLL_INTERVAL_SECONDS = 1.0


def checksum_args(value: Any) -> Any:
    """Checksum every address inside (possibly nested) call arguments"""
    if isinstance(value, str) and validate_address(value):
        return normalize_address(value)
    if isinstance(value, (list, tuple)):
        return type(value)(checksum_args(item) for item in value)
    return value


def checksum_members(values: Dict[str, Any], fields: List[Dict[str, str]]) -> Dict[str, Any]:
    """Checksum the address members of a typed-data message"""
    return {
        member["name"]: normalize_address(values[member["name"]]) if member["type"] == "address"
        else values[member["name"]]
        for member in fields
    }


class EVMChainClient:
    """Contract calls and transactions against an EVM JSON-RPC endpoint"""

    def __init__(self,
                 rpc_url: str,
                 private_key: str,
                 chain_config: ChainConfig,
                 gas_buffer: int = 100_000,
                 fallback_gas_limit: int = 5_000_000,
                 w3: Optional[AsyncWeb3] = None):
        self.chain_config = chain_config
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account: LocalAccount = Account.from_key(private_key)
        self.gas_buffer = gas_buffer
        self.fallback_gas_limit = fallback_gas_limit
        self._nonce: Optional[int] = None
        self._nonce_lock = asyncio.Lock()

    @property
    def account_address(self) -> str:
        return self.account.address

    async def connect(self) -> bool:
        """Check the endpoint and that it serves the configured chain"""
        try:
            if not await self.w3.is_connected():
                logger.error(f"Failed to connect to {self.chain_config.name}")
                return False
            chain_id = await self.w3.eth.chain_id
            if chain_id != self.chain_config.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain_config.chain_id}, got {chain_id}")
            logger.info(f"Connected to {self.chain_config.name} (chain_id: {chain_id})")
            return True
        except Exception as e:
            logger.error(f"Error connecting to {self.chain_config.name}: {e}")
            return False

    async def disconnect(self) -> None:
        if hasattr(self.w3.provider, "disconnect"):
            await self.w3.provider.disconnect()
        logger.info(f"Disconnected from {self.chain_config.name}")

    def _contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=normalize_address(address), abi=abi)

    def _function(self, address: str, method: str, args: Sequence[Any]):
        try:
            abi = ABI_BY_METHOD[method]
        except KeyError:
            raise ValueError(f"No ABI known for method {method}")
        contract = self._contract(address, abi)
        return getattr(contract.functions, method)(*checksum_args(list(args)))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_pool_address(self, pool_key: PoolKey) -> Tuple[str, bool]:
        factory = self._contract(self.chain_config.pool_factory, POOL_FACTORY_ABI)
        pool_address, deployed = await factory.functions.getPoolAddress(
            checksum_args(pool_key.as_tuple())
        ).call()
        return pool_address, deployed

    async def balance_of(self, pool_address: str, account: str, token_type: TokenType) -> int:
        pool = self._contract(pool_address, POOL_ABI)
        return await pool.functions.balanceOf(normalize_address(account), int(token_type)).call()

    async def token_balance(self, token_address: str, account: str) -> int:
        token = self._contract(token_address, ERC20_ABI)
        return await token.functions.balanceOf(normalize_address(account)).call()

    async def token_decimals(self, token_address: str) -> int:
        token = self._contract(token_address, ERC20_ABI)
        return await token.functions.decimals().call()

    async def native_balance(self, account: str) -> int:
        return await self.w3.eth.get_balance(normalize_address(account))

    async def call(self, address: str, method: str, args: Sequence[Any]) -> Any:
        return await self._function(address, method, args).call()

    async def get_pool_deployed_events(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        factory = self._contract(self.chain_config.pool_factory, POOL_FACTORY_ABI)
        logs = await factory.events.PoolDeployed.get_logs(from_block=from_block, to_block=to_block)
        return [
            {
                "base": log["args"]["base"],
                "quote": log["args"]["quote"],
                "oracleAdapter": log["args"]["oracleAdapter"],
                "strike": log["args"]["strike"],
                "maturity": log["args"]["maturity"],
                "isCallPool": log["args"]["isCallPool"],
                "poolAddress": log["args"]["poolAddress"],
            }
            for log in logs
        ]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _next_nonce(self) -> int:
        async with self._nonce_lock:
            if self._nonce is None:
                self._nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
            nonce = self._nonce
            self._nonce += 1
            return nonce

    async def _reset_nonce(self) -> None:
        async with self._nonce_lock:
            self._nonce = None

    async def _estimate_gas(self, function, method: str) -> int:
        try:
            return await function.estimate_gas({"from": self.account.address}) + self.gas_buffer
        except Exception as e:
            logger.warning(f"Failed to estimate gas for {method}: {e}")
            return self.fallback_gas_limit

    async def transact(self, address: str, method: str, args: Sequence[Any]) -> str:
        function = self._function(address, method, args)
        gas = await self._estimate_gas(function, method)

        nonce = await self._next_nonce()
        try:
            tx = await function.build_transaction({
                "from": self.account.address,
                "nonce": nonce,
                "gas": gas,
                "chainId": self.chain_config.chain_id,
            })
            signed_tx = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception:
            await self._reset_nonce()
            raise

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Sent {method} to {address}", extra={"tx_hash": tx_hash_hex, "nonce": nonce, "gas": gas})
        return tx_hash_hex

    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> TransactionResult:
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS)

        target_block = receipt["blockNumber"] + max(confirmations, 1) - 1
        while await self.w3.eth.block_number < target_block:
            await asyncio.sleep(BLOCK_POLL_INTERVAL_SECONDS)

        return self._build_transaction_result(receipt)

    def _build_transaction_result(self, receipt: Dict[str, Any]) -> TransactionResult:
        status = TransactionStatus.CONFIRMED if receipt["status"] == 1 else TransactionStatus.REVERTED
        return TransactionResult(
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            status=status,
            gas_used=receipt.get("gasUsed", 0),
        )


class LocalAccountSigner:
    """EIP-712 signer backed by the gateway's private key"""

    def __init__(self, private_key: str):
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self,
                        domain: Dict[str, Any],
                        types: Dict[str, List[Dict[str, str]]],
                        message: Dict[str, Any]) -> bytes:
        domain_data = {**domain, "verifyingContract": normalize_address(domain["verifyingContract"])}
        message_data = {}
        for fields in types.values():
            message_data = checksum_members(typed_values(fields, message), fields)
        signed = self._account.sign_typed_data(
            domain_data=domain_data,
            message_types=types,
            message_data=message_data,
        )
        return bytes(signed.signature)


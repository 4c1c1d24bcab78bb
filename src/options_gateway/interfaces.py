"""
Interfaces (protocols) for the gateway's external collaborators.
Using Python's Protocol for structural subtyping.
"""

from typing import Protocol, Dict, Any, List, Sequence, Tuple
from abc import abstractmethod

from .types import PoolKey, TokenType, TokenBalance, TransactionResult


class IChainClient(Protocol):
    """Minimal contract-call interface to the options chain"""

    @property
    @abstractmethod
    def account_address(self) -> str:
        """Address transactions are sent from"""
        ...

    @abstractmethod
    async def get_pool_address(self, pool_key: PoolKey) -> Tuple[str, bool]:
        """Pool address for a key and whether it is deployed"""
        ...

    @abstractmethod
    async def balance_of(self, pool_address: str, account: str, token_type: TokenType) -> int:
        """ERC1155 option balance of an account"""
        ...

    @abstractmethod
    async def token_balance(self, token_address: str, account: str) -> int:
        """ERC20 balance in token units"""
        ...

    @abstractmethod
    async def token_decimals(self, token_address: str) -> int:
        ...

    @abstractmethod
    async def native_balance(self, account: str) -> int:
        ...

    @abstractmethod
    async def call(self, address: str, method: str, args: Sequence[Any]) -> Any:
        """Read-only contract call"""
        ...

    @abstractmethod
    async def transact(self, address: str, method: str, args: Sequence[Any]) -> str:
        """Sign and send a contract transaction; returns the transaction hash"""
        ...

    @abstractmethod
    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> TransactionResult:
        ...

    @abstractmethod
    async def get_pool_deployed_events(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """PoolDeployed factory events in a block range"""
        ...


class ITypedDataSigner(Protocol):
    """EIP-712 typed-data signing primitive"""

    @property
    @abstractmethod
    def address(self) -> str:
        ...

    @abstractmethod
    def sign_typed_data(self,
                        domain: Dict[str, Any],
                        types: Dict[str, List[Dict[str, str]]],
                        message: Dict[str, Any]) -> bytes:
        """Return the 65 byte r || s || v signature"""
        ...


class IApiKeyVerifier(Protocol):
    """Verifies client API keys"""

    @abstractmethod
    async def verify(self, api_key: str) -> Tuple[bool, str]:
        """Return (valid, reason code)"""
        ...


class IBalanceProvider(Protocol):
    """Collateral balance snapshots"""

    @abstractmethod
    async def get_balances(self, wallet: str) -> Tuple[List[TokenBalance], List[Dict[str, Any]]]:
        """Balances of every configured collateral token, plus per-token failures"""
        ...

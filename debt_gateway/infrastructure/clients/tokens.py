"""Static token registry built from configuration"""

from typing import Dict, Iterable, List

from debt_gateway.config import TokenSettings, settings
from debt_gateway.domain.exceptions import UnknownTokenError
from debt_gateway.domain.ports import TokenInfo
from debt_gateway.domain.values import EthereumAddress


class StaticTokenRegistry:
    """Symbol and index lookup over a fixed token list"""

    def __init__(self, tokens: Iterable[TokenInfo]):
        self._by_symbol: Dict[str, TokenInfo] = {}
        self._by_index: Dict[int, TokenInfo] = {}
        for token in tokens:
            self._by_symbol[token.symbol.upper()] = token
            self._by_index[token.index] = token

    @classmethod
    def from_settings(cls, entries: List[TokenSettings] | None = None) -> "StaticTokenRegistry":
        entries = settings.tokens if entries is None else entries
        return cls(
            TokenInfo(
                symbol=entry.symbol,
                address=EthereumAddress(entry.address),
                index=entry.index,
                decimals=entry.decimals,
            )
            for entry in entries
        )

    def get_token(self, symbol: str) -> TokenInfo:
        try:
            return self._by_symbol[symbol.upper()]
        except KeyError as e:
            raise UnknownTokenError(f"Unknown token symbol: {symbol}") from e

    def get_token_by_index(self, index: int) -> TokenInfo:
        try:
            return self._by_index[index]
        except KeyError as e:
            raise UnknownTokenError(f"Unknown token index: {index}") from e

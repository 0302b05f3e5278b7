"""
Built-in token actions.

``lookup_token`` and ``add_token`` work against an in-memory token
directory; ``transfer`` resolves its arguments through the same directory
and hands an ERC-20 ``transfer`` invoke payload to the chain client.
``quote_swap`` asks the Ekubo quoter API what a swap between two tokens
would cost.
"""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from asuka.models.actions import ActionSpec
from asuka.models.enums import EffectClass
from asuka.registry.action_registry import ActionRegistry


logger = logging.getLogger("asuka.actions.tokens")

# Starknet field prime; addresses and calldata words must be below it
FELT_PRIME = 2**251 + 17 * 2**192 + 1
_U128 = 2**128

DEFAULT_QUOTE_URL = "https://mainnet-api.ekubo.org"
# Negative amounts quote an exact output
DEFAULT_QUOTE_AMOUNT = "-1e9"


def parse_felt(value: str) -> Optional[int]:
    """Parse a 0x-prefixed field element, or return None"""
    text = value.strip().lower()
    if not text.startswith("0x") or len(text) <= 2:
        return None
    try:
        number = int(text, 16)
    except ValueError:
        return None
    return number if number < FELT_PRIME else None


def parse_amount(value: str) -> Optional[int]:
    """Parse a non-negative decimal or 0x-prefixed amount that fits in a u256"""
    text = value.strip().lower()
    try:
        number = int(text, 16) if text.startswith("0x") else int(text, 10)
    except ValueError:
        return None
    if number < 0 or number >= 2**256:
        return None
    return number


class TokenInfo(BaseModel):
    """A known token contract"""
    name: str
    symbol: str
    address: str = Field(..., description="0x-prefixed contract address")


class TokenDirectory:
    """Name/symbol to address lookups for tokens and named accounts"""

    def __init__(
        self,
        tokens: Optional[list[TokenInfo]] = None,
        accounts: Optional[dict[str, str]] = None,
    ):
        self._tokens: dict[str, TokenInfo] = {}
        self._accounts: dict[str, str] = {}
        for token in tokens or []:
            self.add_token(token.name, token.symbol, token.address)
        for name, address in (accounts or {}).items():
            self.add_account(name, address)

    @property
    def tokens(self) -> list[TokenInfo]:
        return list(self._tokens.values())

    def add_token(self, name: str, symbol: str, address: str) -> TokenInfo:
        """
        Record a token contract.

        Raises:
            ValueError: the address is not a valid field element, or the
                address is already registered
        """
        if parse_felt(address) is None:
            raise ValueError(f"Invalid token address: {address}")
        normalised = address.strip().lower()
        if normalised in self._tokens:
            raise ValueError(f"Token already registered at {normalised}")
        token = TokenInfo(name=name, symbol=symbol, address=normalised)
        self._tokens[normalised] = token
        logger.info("Added token %s (%s) at %s", name, symbol, normalised)
        return token

    def add_account(self, name: str, address: str) -> None:
        if parse_felt(address) is None:
            raise ValueError(f"Invalid account address: {address}")
        self._accounts[name.lower()] = address.strip().lower()

    def lookup_token(self, token: str) -> Optional[TokenInfo]:
        """Find a token by contract address, name or symbol (case-insensitive)"""
        needle = token.strip().lower()
        if needle in self._tokens:
            return self._tokens[needle]
        for info in self._tokens.values():
            if info.name.lower() == needle or info.symbol.lower() == needle:
                return info
        return None

    def lookup_recipient(self, recipient: str) -> Optional[str]:
        """Accept a raw address or resolve a named account"""
        if parse_felt(recipient) is not None:
            return recipient.strip().lower()
        return self._accounts.get(recipient.strip().lower())


def _quote_amount(amount: str) -> Optional[str]:
    text = amount.strip()
    try:
        float(text)
    except ValueError:
        return None
    return text


def register_token_actions(
    registry: ActionRegistry,
    directory: TokenDirectory,
    http_client: Optional[httpx.AsyncClient] = None,
    quote_url: str = DEFAULT_QUOTE_URL,
) -> list[ActionSpec]:
    """
    Register lookup_token, add_token, transfer and quote_swap against
    ``directory``.

    ``http_client`` is used for quote requests when given; otherwise each
    quote opens its own short-lived client.
    """

    def lookup_token(token: str) -> dict:
        info = directory.lookup_token(token)
        if info is None:
            raise LookupError(f"Token not found: {token}")
        return info.model_dump()

    def add_token(name: str, symbol: str, address: str) -> str:
        info = directory.add_token(name, symbol, address)
        return f"Added token {info.name} ({info.symbol}) at address {info.address}"

    def transfer(recipient: str, amount: str, token: str) -> dict:
        info = directory.lookup_token(token)
        if info is None:
            raise LookupError(f"Token not found: {token}")
        recipient_address = directory.lookup_recipient(recipient)
        if recipient_address is None:
            raise ValueError(f"Invalid recipient address: {recipient}")
        value = parse_amount(amount)
        if value is None:
            raise ValueError(f"Invalid amount: {amount}")

        # u256 calldata is (low, high)
        return {
            "type": "INVOKE",
            "calls": [
                {
                    "contract_address": info.address,
                    "entry_point": "transfer",
                    "calldata": [recipient_address, hex(value % _U128), hex(value // _U128)],
                }
            ],
        }

    async def quote_swap(a: str, b: str, amount: str = DEFAULT_QUOTE_AMOUNT) -> dict:
        buy, sell = directory.lookup_token(a), directory.lookup_token(b)
        if buy is None:
            raise LookupError(f"Token not found: {a}")
        if sell is None:
            raise LookupError(f"Token not found: {b}")
        quoted = _quote_amount(amount)
        if quoted is None:
            raise ValueError(f"Invalid amount: {amount}")

        url = f"{quote_url.rstrip('/')}/quote/{quoted}/{buy.address}/{sell.address}"
        headers = {"accept": "application/json"}
        if http_client is not None:
            response = await http_client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(url, headers=headers)
        response.raise_for_status()

        body = response.json()
        logger.debug("Quote %s %s -> %s: %s", quoted, sell.symbol, buy.symbol, body.get("total"))
        return {
            "buy": buy.symbol,
            "sell": sell.symbol,
            "amount": quoted,
            "total": body["total"],
            "splits": len(body.get("splits", [])),
        }

    specs = [
        ActionSpec(
            name="lookup_token",
            description="Look up a token contract by name, symbol or address",
            parameters={
                "type": "object",
                "properties": {
                    "token": {"type": "string", "description": "The token name, symbol or contract address"},
                },
                "required": ["token"],
            },
            effect=EffectClass.READ_ONLY,
            executor=lookup_token,
        ),
        ActionSpec(
            name="add_token",
            description="Add a new token",
            parameters={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "The name of the token"},
                    "symbol": {"type": "string", "description": "The symbol of the token"},
                    "address": {"type": "string", "description": "The contract address of the token"},
                },
                "required": ["name", "symbol", "address"],
            },
            effect=EffectClass.OFF_CHAIN_WRITE,
            executor=add_token,
        ),
        ActionSpec(
            name="transfer",
            description="Transfer tokens to a recipient",
            parameters={
                "type": "object",
                "properties": {
                    "recipient": {"type": "string", "description": "The recipient address or account name"},
                    "amount": {"type": "string", "description": "The amount to transfer"},
                    "token": {"type": "string", "description": "The token name, symbol or contract address"},
                },
                "required": ["recipient", "amount", "token"],
            },
            effect=EffectClass.ON_CHAIN_WRITE,
            executor=transfer,
        ),
        ActionSpec(
            name="quote_swap",
            description="Quote a swap of token b for token a",
            parameters={
                "type": "object",
                "properties": {
                    "a": {"type": "string", "description": "The token to buy"},
                    "b": {"type": "string", "description": "The token to sell"},
                    "amount": {
                        "type": "string",
                        "description": "The amount to quote; negative for an exact amount bought",
                    },
                },
                "required": ["a", "b"],
            },
            effect=EffectClass.READ_ONLY,
            executor=quote_swap,
        ),
    ]
    return [registry.register(spec) for spec in specs]

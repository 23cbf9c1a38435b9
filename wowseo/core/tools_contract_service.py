"""
The tools contract service wraps the DashboardToolsContract:
tool price registration, price queries, and token-gated payment.
"""

import logging
import os
import pprint
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union

import requests
from beeprint import pp
from dotenv import load_dotenv
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, Web3Exception
from web3.middleware import BufferedGasEstimateMiddleware, SignAndSendRawMiddlewareBuilder

from wowseo.core.chain_client import connect_http_web3, get_bool_env_var, resolve_rpc_url
from wowseo.core.pricing import TOOL_IDS, ToolName
from wowseo.core.types import PriceQuote
from wowseo.utils.abi_utils import load_abi
from wowseo.utils.crypto_utils import (
    bytes_to_hex_str_auto,
    hex_str_to_bytes,
    normalize_hash,
)
from wowseo.utils.error_utils import (
    PaymentError,
    PaymentErrorKind,
    TransientChainError,
    check_for_missing_env_vars,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


TOOLS_CONTRACT_ABI_FILE = "DashboardToolsContract.json"
ERC20_ABI_FILE = "ERC20.json"

# EIP-1193 user rejection code.
_USER_REJECTED_CODE = 4001

T = TypeVar("T")


class ConnectionState(str, Enum):
    """
    Contract connection state.
    READ_ONLY has no signing account: reads work, writes are refused.
    """

    CONNECTED = "connected"
    READ_ONLY = "read_only"
    DISCONNECTED = "disconnected"


def classify_payment_error(e: BaseException) -> PaymentErrorKind:
    """
    Classify a contract or node failure for the user.

    :param e: The exception.
    :return: The error kind.
    """
    if isinstance(e, PaymentError):
        return e.kind
    message = str(e).lower()
    code = getattr(e, "code", None)
    if code == _USER_REJECTED_CODE or "user rejected" in message or "user denied" in message:
        return PaymentErrorKind.USER_REJECTED
    if (
        "insufficient funds" in message
        or "insufficient balance" in message
        or "exceeds balance" in message
        or "insufficient allowance" in message
    ):
        return PaymentErrorKind.INSUFFICIENT_FUNDS
    if (
        "accesscontrol" in message
        or "missing role" in message
        or "unauthorized" in message
        or "not authorized" in message
    ):
        return PaymentErrorKind.PERMISSION_DENIED
    if "token not accepted" in message or "unsupported token" in message:
        return PaymentErrorKind.UNSUPPORTED_TOKEN
    if isinstance(
        e,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            TransientChainError,
            ConnectionError,
        ),
    ):
        return PaymentErrorKind.NETWORK
    if isinstance(e, ContractLogicError):
        return PaymentErrorKind.CONTRACT_REVERT
    return PaymentErrorKind.UNKNOWN


# Failures translated to PaymentError.
_CONTRACT_ERRORS = (Web3Exception, requests.exceptions.RequestException, ValueError)


def _tool_id_bytes(tool_id: str) -> bytes:
    # bytes32 argument; raises ValueError for a malformed id.
    return hex_str_to_bytes(normalize_hash(tool_id))


class ToolsContractService:
    """
    Typed access to the DashboardToolsContract over an existing Web3 object.
    """

    def __init__(
        self,
        w3: Web3,
        tools_contract: Union[Type[Contract], Contract],
        account: Optional[str] = None,
    ):
        """
        Initialize the service object.

        :param w3: The Web3 object.
        :param tools_contract: The DashboardToolsContract.
        :param account: The signing account. None for read-only access.
        """
        self.w3 = w3
        self.tc = tools_contract
        self.account = account
        self._state = (
            ConnectionState.CONNECTED if account is not None else ConnectionState.READ_ONLY
        )

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    def disconnect(self):
        self._state = ConnectionState.DISCONNECTED

    def _require_state(self, *states: ConnectionState):
        if self._state not in states:
            raise PaymentError(
                f"Contract service is {self._state.value}",
                PaymentErrorKind.NOT_CONNECTED,
            )

    def _call(self, operation: str, call: Callable[[], T]) -> T:
        """
        Run a contract operation and classify its failures.

        :param operation: The operation name used in messages.
        :param call: The operation.
        :return: The operation result.
        """
        try:
            return call()
        except PaymentError:
            raise
        except _CONTRACT_ERRORS as e:
            kind = classify_payment_error(e)
            _LOG.error("%s failed (%s): %s", operation, kind.value, e)
            raise PaymentError(f"{operation} failed: {e}", kind, e) from e

    def _read(self, operation: str, call: Callable[[], T]) -> T:
        self._require_state(ConnectionState.CONNECTED, ConnectionState.READ_ONLY)
        return self._call(operation, call)

    def is_tool_registered(self, tool_id: str) -> bool:
        return self._read(
            "isToolRegistered",
            lambda: self.tc.functions.isToolRegistered(_tool_id_bytes(tool_id)).call(),
        )

    def tool_price(self, tool_id: str) -> int:
        return int(
            self._read(
                "toolPrices",
                lambda: self.tc.functions.toolPrices(_tool_id_bytes(tool_id)).call(),
            )
        )

    def get_tools_price(self, token: str, tool_ids: Iterable[str]) -> PriceQuote:
        """
        Get the on-chain price of a tool selection.

        :param token: The payment token address.
        :param tool_ids: The tool ids.
        :return: The quote.
        """
        ids = [_tool_id_bytes(tool_id) for tool_id in tool_ids]
        subtotal, final_price, is_full_bundle = self._read(
            "getToolsPrice",
            lambda: self.tc.functions.getToolsPrice(
                Web3.to_checksum_address(token), ids
            ).call(),
        )
        return PriceQuote(
            subtotal=int(subtotal),
            final_price=int(final_price),
            is_full_bundle_discount=bool(is_full_bundle),
        )

    def complete_audit_discount_percentage(self) -> int:
        return int(
            self._read(
                "completeAuditDiscountPercentage",
                lambda: self.tc.functions.completeAuditDiscountPercentage().call(),
            )
        )

    def is_token_accepted(self, token: str) -> bool:
        return self._read(
            "acceptedTokens",
            lambda: self.tc.functions.acceptedTokens(
                Web3.to_checksum_address(token)
            ).call(),
        )

    def get_tool_registry(
        self, tool_names: Iterable[ToolName] = ToolName
    ) -> Dict[str, int]:
        """
        Mirror the registered tool prices.

        :param tool_names: The tools to look up.
        :return: Registered tool id -> price. Unregistered tools are omitted.
        """
        registry = {}
        for tool in tool_names:
            tool_id = TOOL_IDS[tool]
            if self.is_tool_registered(tool_id):
                registry[tool_id] = self.tool_price(tool_id)
        return registry

    @staticmethod
    def _check_tx_success(operation: str, receipt) -> dict:
        if receipt is None:
            _LOG.error("%s failed with receipt = None", operation)
            raise PaymentError(f"{operation} returned no receipt")
        _LOG.debug("Transaction receipt:")
        _LOG.debug(pp(dict(receipt), output=False))
        if not receipt["status"]:
            _LOG.error("%s failed with receipt:", operation)
            _LOG.error(pp(dict(receipt), output=False))
            raise PaymentError(
                f"{operation} transaction reverted", PaymentErrorKind.CONTRACT_REVERT
            )
        return dict(receipt)

    def _transact(self, operation: str, function) -> dict:
        def send():
            tx_hash = function.transact({"from": self.account})
            return self.w3.eth.wait_for_transaction_receipt(tx_hash)

        receipt = self._call(operation, send)
        return self._check_tx_success(operation, receipt)

    def set_tool_price(self, tool_id: str, price: int) -> dict:
        """
        Register or update a tool price. Requires the PRICE_ADMIN role on chain.

        :param tool_id: The tool id.
        :param price: The price in the smallest token unit.
        :return: The transaction receipt.
        """
        self._require_state(ConnectionState.CONNECTED)
        if price < 0:
            raise ValueError(f"Price must not be negative, got {price}")
        _LOG.debug("Sending transaction to setToolPrice")
        return self._transact(
            "setToolPrice",
            self.tc.functions.setToolPrice(_tool_id_bytes(tool_id), int(price)),
        )

    def pay_for_tools(self, token: str, tool_ids: List[str]) -> dict:
        """
        Pay for a tool selection: approve the final price, then pay.

        :param token: The payment token address.
        :param tool_ids: The tool ids.
        :return: A dict with transactionHash, blockNumber, and amount.
        """
        self._require_state(ConnectionState.CONNECTED)
        if not self.is_token_accepted(token):
            raise PaymentError(
                f"Token {token} is not accepted", PaymentErrorKind.UNSUPPORTED_TOKEN
            )
        quote = self.get_tools_price(token, tool_ids)

        erc20 = self.w3.eth.contract(
            address=Web3.to_checksum_address(token), abi=load_abi(ERC20_ABI_FILE)
        )
        _LOG.debug("Sending transaction to approve %s", quote.final_price)
        self._transact(
            "approve", erc20.functions.approve(self.tc.address, quote.final_price)
        )

        _LOG.debug("Sending transaction to payForTools")
        receipt = self._transact(
            "payForTools",
            self.tc.functions.payForTools(
                Web3.to_checksum_address(token),
                [_tool_id_bytes(tool_id) for tool_id in tool_ids],
            ),
        )
        return {
            "transactionHash": bytes_to_hex_str_auto(receipt["transactionHash"]),
            "blockNumber": receipt.get("blockNumber"),
            "amount": quote.final_price,
        }


class Web3HTTPToolsContractService(ToolsContractService):
    """
    Tools contract service accessible using Web3.HTTPProvider.
    Without a private key, the service is read-only.
    """

    def __init__(
        self,
        node_rpc_url: str,
        tools_contract_address: str,
        network: str = "mainnet",
        private_key: Optional[str] = None,
        inject_poa_middleware: bool = False,
    ):
        """
        Initialize the service object.

        :param node_rpc_url: Node RPC URL.
        :param tools_contract_address: The DashboardToolsContract address.
        :param network: The network name, used in messages.
        :param private_key: The signing key.
            Transactions are signed locally and sent using eth_sendRawTransaction.
        :param inject_poa_middleware: True if the ExtraDataToPOAMiddleware
            is required for the network.
        """
        w3 = connect_http_web3(node_rpc_url, network, inject_poa_middleware)

        account = None
        if private_key is not None:
            acct = w3.eth.account.from_key(private_key)
            w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(acct), layer=0)
            w3.eth.default_account = acct.address
            account = acct.address

        # Gas estimates run before signing.
        w3.middleware_onion.add(BufferedGasEstimateMiddleware)

        tools_contract = w3.eth.contract(
            address=w3.to_checksum_address(tools_contract_address),
            abi=load_abi(TOOLS_CONTRACT_ABI_FILE),
        )
        super().__init__(w3, tools_contract, account)

    @staticmethod
    def get_init_args_from_env(dotenv_path: Union[str, None] = None) -> dict:
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        network = os.getenv("WOWSEO_TOOLS_NETWORK", default="mainnet")
        init_args = {
            "node_rpc_url": resolve_rpc_url(network),
            "tools_contract_address": os.getenv("WOWSEO_TOOLS_CONTRACT_ADDRESS"),
            "network": network,
            "inject_poa_middleware": get_bool_env_var(
                os.getenv("WOWSEO_INJECT_POA_MIDDLEWARE", default="False")
            ),
        }
        # Check for missing environment variables since these are unrecoverable.
        check_for_missing_env_vars(init_args)
        _LOG.debug(
            "Web3HTTPToolsContractService.get_init_args_from_env(): init_args =\n%s",
            pprint.pformat({k: v for k, v in init_args.items() if k != "node_rpc_url"}),
        )
        # The private key is optional: without it the service is read-only.
        init_args["private_key"] = os.getenv("WOWSEO_PRIVATE_KEY")
        return init_args

    @staticmethod
    def create_instance_from_env(
        dotenv_path: Union[str, None] = None
    ) -> "Web3HTTPToolsContractService":
        return Web3HTTPToolsContractService(
            **Web3HTTPToolsContractService.get_init_args_from_env(dotenv_path)
        )

"""
Tool payment quotes, submission, and statistics.
"""

import logging
import threading
from typing import Iterable, List, Optional, Union

from wowseo.core.database_service import DatabaseService, new_id, now_ms
from wowseo.core.models import ToolPayment
from wowseo.core.pricing import (
    TOOL_NAMES_BY_ID,
    ToolName,
    compute_price,
    tally_tool_usage,
    tool_id_for,
)
from wowseo.core.tools_contract_service import ToolsContractService
from wowseo.core.types import PaymentStatus, PriceQuote
from wowseo.utils.error_utils import (
    ConfigurationError,
    DuplicatePaymentError,
    PaymentError,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


class PaymentService:
    """
    Quotes and submits tool payments and keeps the payment records.
    A user has at most one payment in flight.
    """

    def __init__(
        self,
        tools_contract_service: ToolsContractService,
        database_service: DatabaseService,
        chain_id: int,
        default_token: Optional[str] = None,
    ):
        self.contract = tools_contract_service
        self.db = database_service
        self.chain_id = chain_id
        self.default_token = default_token
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

    def _resolve_token(self, token: Optional[str]) -> str:
        token = token or self.default_token
        if not token:
            raise ConfigurationError("No payment token given and no default token set")
        return token

    @staticmethod
    def _tool_ids(tool_names: Iterable[Union[str, ToolName]]) -> List[str]:
        return [tool_id_for(name) for name in tool_names]

    def quote(
        self, tool_names: Iterable[Union[str, ToolName]], token: Optional[str] = None
    ) -> PriceQuote:
        """
        Price a tool selection from the mirrored registry and discount.

        :param tool_names: Tool names or aliases.
        :param token: The payment token. Prices do not depend on it.
        :return: The quote.
        """
        tool_ids = self._tool_ids(tool_names)
        return compute_price(
            tool_ids,
            self.contract.get_tool_registry(),
            self.contract.complete_audit_discount_percentage(),
        )

    def verify_quote(
        self, tool_names: Iterable[Union[str, ToolName]], token: Optional[str] = None
    ) -> bool:
        """
        Check the local quote against the contract's getToolsPrice.

        :param tool_names: Tool names or aliases.
        :param token: The payment token.
        :return: True if both quotes agree.
        """
        tool_names = list(tool_names)
        local = self.quote(tool_names, token)
        on_chain = self.contract.get_tools_price(
            self._resolve_token(token), self._tool_ids(tool_names)
        )
        if local != on_chain:
            _LOG.warning("Quote mismatch: local %s, on chain %s", local, on_chain)
            return False
        return True

    def pay(
        self,
        user_id: str,
        tool_names: Iterable[Union[str, ToolName]],
        token: Optional[str] = None,
    ) -> ToolPayment:
        """
        Pay for a tool selection on behalf of a user.

        :param user_id: The paying user.
        :param tool_names: Tool names or aliases.
        :param token: The payment token. Defaults to the service's default token.
        :return: The confirmed payment. Failures raise PaymentError
            after the payment is recorded as failed.
        """
        token = self._resolve_token(token)
        tool_ids = self._tool_ids(tool_names)

        with self._in_flight_lock:
            if user_id in self._in_flight:
                raise DuplicatePaymentError(user_id)
            self._in_flight.add(user_id)
        try:
            quote = self.quote([TOOL_NAMES_BY_ID[tool_id] for tool_id in tool_ids], token)
            ts = now_ms()
            payment = self.db.create_payment(
                ToolPayment(
                    id=new_id(),
                    user_id=user_id,
                    tool_ids=tool_ids,
                    token_address=token.lower(),
                    chain_id=self.chain_id,
                    amount=quote.final_price,
                    status=PaymentStatus.PENDING.value,
                    created_at=ts,
                    updated_at=ts,
                )
            )
            try:
                receipt = self.contract.pay_for_tools(token, tool_ids)
            except PaymentError as e:
                _LOG.error("Payment %s for user %s failed: %s", payment.id, user_id, e)
                self.db.update_payment(
                    payment.id, status=PaymentStatus.FAILED.value, error=str(e)
                )
                raise
            _LOG.info(
                "Payment %s for user %s confirmed in %s",
                payment.id,
                user_id,
                receipt["transactionHash"],
            )
            return self.db.update_payment(
                payment.id,
                status=PaymentStatus.CONFIRMED.value,
                transaction_hash=receipt["transactionHash"],
                amount=receipt["amount"],
            )
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(user_id)

    def get_payment_stats(self, user_id: str) -> dict:
        """
        Summarize a user's payments.

        :param user_id: The user.
        :return: A dict with total, byStatus, totalConfirmedAmount, and toolUsage
            (tool name -> confirmed purchases).
        """
        payments = self.db.list_payments(user_id)
        by_status = {status.value: 0 for status in PaymentStatus}
        for payment in payments:
            by_status[payment.status] = by_status.get(payment.status, 0) + 1
        confirmed = [p for p in payments if p.status == PaymentStatus.CONFIRMED.value]
        usage = tally_tool_usage(
            TOOL_NAMES_BY_ID[tool_id]
            for payment in confirmed
            for tool_id in payment.tool_ids
            if tool_id in TOOL_NAMES_BY_ID
        )
        return {
            "total": len(payments),
            "byStatus": by_status,
            "totalConfirmedAmount": sum(p.amount for p in confirmed),
            "toolUsage": {tool.value: count for tool, count in usage.items()},
        }

"""Classification of storefront transactions as verified or rejected."""

from __future__ import annotations

from pydantic import ValidationError

from photo_converter.core.errors import VerificationFailed
from photo_converter.core.security import peek_payload, verify_payload
from photo_converter.models.store import PurchaseRecord, SignedTransaction, Transaction


class TransactionVerifier:
    """Check the storefront signature on a transaction.

    Holds only the shared signing secret; ``check_verified`` has no side
    effects and can be called concurrently.
    """

    def __init__(self, signing_secret: str) -> None:
        self._secret = signing_secret

    def check_verified(self, result: SignedTransaction) -> Transaction:
        """Return the trusted transaction or raise :class:`VerificationFailed`."""

        try:
            claims = verify_payload(result.token, self._secret)
        except ValueError as exc:
            raise VerificationFailed(str(exc)) from exc
        try:
            return Transaction.model_validate(claims)
        except ValidationError as exc:
            raise VerificationFailed("signed payload is not a transaction") from exc

    def classify(self, result: SignedTransaction) -> PurchaseRecord:
        """Describe ``result`` for audit purposes, verified or not."""

        try:
            transaction = self.check_verified(result)
        except VerificationFailed:
            claims = peek_payload(result.token)
            return PurchaseRecord(
                product_id=str(claims.get("product_id", "")),
                verified=False,
                transaction_id=str(claims.get("transaction_id", "")),
            )
        return PurchaseRecord(
            product_id=transaction.product_id,
            verified=True,
            transaction_id=transaction.transaction_id,
        )

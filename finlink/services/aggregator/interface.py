"""
Abstract Aggregator Interface

The bank-data aggregator is a leaf dependency with no state of its own:
it exchanges link tokens for credentials, hands out pages of transaction
deltas and expires credentials on request.

Every method returns validated models. Raw SDK payloads stay inside the
implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional

from finlink.models.finance import InstitutionInfo
from finlink.models.outcomes import SyncPage, TokenExchange


class AggregatorClientInterface(ABC):
    """Operations the engines need from a bank-data aggregator."""

    @abstractmethod
    async def create_link_token(self, user_id: str) -> str:
        """
        Create a short-lived token for the client-side link widget.

        Raises:
            AggregatorError: If the aggregator rejects the request
        """
        pass

    @abstractmethod
    async def exchange_public_token(self, public_token: str) -> TokenExchange:
        """
        Exchange the public token from the link widget for a credential.

        Returns:
            The access credential and the external item id

        Raises:
            AggregatorError: If the exchange fails
        """
        pass

    @abstractmethod
    async def sync_transactions(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 100,
    ) -> SyncPage:
        """
        Fetch one page of transaction deltas.

        Args:
            access_token: Credential of the linked account
            cursor: Resume token from the previous page, None for a full sync
            count: Page size requested

        Returns:
            Added/modified/removed deltas, next_cursor and has_more

        Raises:
            LoginRequiredError: If the institution rejected the credential
            AggregatorError: For any other failure
        """
        pass

    @abstractmethod
    async def remove_item(self, access_token: str) -> bool:
        """
        Expire the credential with the aggregator.

        Raises:
            AggregatorError: If the aggregator call fails
        """
        pass

    @abstractmethod
    async def get_institution(self, access_token: str) -> Optional[InstitutionInfo]:
        """
        Look up display metadata for the institution behind a credential.

        Returns:
            Institution info, or None if the item has no institution

        Raises:
            AggregatorError: If the lookup fails
        """
        pass


class AggregatorError(Exception):
    """Base exception for aggregator calls."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.error_code = error_code
        super().__init__(message)


class LoginRequiredError(AggregatorError):
    """The institution needs the user to log in again."""
    pass

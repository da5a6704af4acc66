class OrderSyncError(Exception):
    """Base class for errors raised while syncing orders to the sheet."""


class MalformedOrder(OrderSyncError):
    """The order record has no purchaser or otherwise can't be split."""


class MissingCredentials(OrderSyncError):
    """No API tokens are stored yet. Visit the authorization endpoint first."""


class AuthExchangeFailed(OrderSyncError):
    """The provider rejected the authorization code."""


class AppendFailed(OrderSyncError):
    """The Sheets API returned an error for an append call."""

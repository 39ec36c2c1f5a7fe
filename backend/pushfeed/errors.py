"""Error taxonomy for dispatch and feed operations.

Only configuration problems, reconciler conflicts and feed subscription
failures are raised. Delivery failures are reported as outcome values
(see ``services.push_gateway.DeliveryStatus``) so one bad token never
aborts processing of the others, and a missing token is a normal branch.
"""


class PushFeedError(Exception):
    """Base class for service errors."""


class ConfigurationError(PushFeedError):
    """Store or gateway credentials are missing. Fatal at startup."""


class TransactionConflict(PushFeedError):
    """The read-state transaction lost a race with a concurrent writer."""


class FeedSubscriptionError(PushFeedError):
    """A live feed subscription was terminated and must be re-opened."""

    def __init__(self, user_id: str, reason: str):
        super().__init__(f"Feed subscription for {user_id} closed: {reason}")
        self.user_id = user_id
        self.reason = reason

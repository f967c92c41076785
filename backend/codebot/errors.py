"""
Error taxonomy for the code relay.

The resolution core (code_resolver, page_resolver) never raises these past its
public boundary; they are raised by the relay service and translated into HTTP
status codes by the routers:

  NoMatchingMessage        → 404
  NoCodeFound              → 404
  InvalidCodeFormat        → 400
  RecipientNotConfigured   → 400
  ChannelNotReady          → 503
  DeliveryFailed           → 502
"""


class CodeBotError(Exception):
    """Base class for all expected relay failures."""


class NoMatchingMessage(CodeBotError):
    """No email matched the sender/subject filters inside the lookback window."""


class NoCodeFound(CodeBotError):
    """A message was found but no code could be extracted by any strategy."""


class SecondaryResolutionFailed(CodeBotError):
    """
    Raised inside the secondary page resolver when a page step fails.

    Always collapses to NotFound at the resolver boundary.
    """


class ChannelNotReady(CodeBotError):
    """Delivery attempted before the messaging channel is connected."""


class InvalidCodeFormat(CodeBotError):
    """A caller-supplied code is not 4-8 ASCII digits."""


class RecipientNotConfigured(CodeBotError):
    """No delivery recipient is configured."""


class DeliveryFailed(CodeBotError):
    """The messaging gateway rejected or failed a send."""

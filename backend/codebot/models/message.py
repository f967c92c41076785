"""
Provider-agnostic fetched email model.

The mailbox layer maps raw IMAP/MIME data to this model; the resolver works
exclusively with it.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class InboundMessage(BaseModel):
    """
    Immutable snapshot of the newest matching email.

    body is already unwrapped to plain text (HTML is used only when the
    message has no text/plain part). Absence of a message is represented by
    None at the mailbox boundary, never by an empty InboundMessage.
    """

    model_config = ConfigDict(frozen=True)

    subject: str = ""
    sender: str = ""
    body: str = ""
    received_at: datetime

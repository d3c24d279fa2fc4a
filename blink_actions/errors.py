class ActionError(Exception):
    """Base error for the action pipeline; carries the status and the client-facing message."""

    status_code = 500
    public_message = "Internal server error"


class InvalidInput(ActionError):
    status_code = 400
    public_message = "Invalid request parameters"


class InternalError(ActionError):
    status_code = 500
    public_message = "Internal server error"


class AnchorUnavailable(InternalError):
    """The RPC node did not hand back a usable recent blockhash."""


class DerivationFailure(InternalError):
    """No bump seed produced an off-curve program address."""

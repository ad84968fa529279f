# Error taxonomy shared by the FXP modules

class FXPError(Exception):
    """Base class for every error raised by the FXP modules."""
    pass

class FXPConnectionError(FXPError):
    """The control connection was closed or failed at the socket level."""
    pass

class FXPConfigError(FXPError):
    """Session or site options could not be read or written."""
    pass

class FXPAuthenticationError(FXPError):
    """Login was rejected (possibly after a successful TLS handshake)."""
    pass

class SecureModeError(FXPError):
    """A TLS precondition failed or the TLS handshake could not be done."""
    pass

class ProtocolError(FXPError):
    """A reply arrived with a code outside the expected class."""

    def __init__(self, message, response=None):
        super().__init__(message)
        self.response = response

    @property
    def code(self):
        return self.response.code if self.response is not None else None

class NegotiationError(ProtocolError):
    """The PASV/CPSV reply was refused or did not carry a usable h1,h2,h3,h4,p1,p2 tuple."""
    pass

class FXPTransferError(FXPError):
    """A coordinated transfer failed on one side.

    `response` is the failing side's reply (None when the reply never
    arrived) and `partial` is whatever the other side reported.
    """

    def __init__(self, message, response=None, partial=None):
        super().__init__(message)
        self.response = response
        self.partial = partial

class FXPSourceError(FXPTransferError):
    pass

class FXPDestinationError(FXPTransferError):
    pass

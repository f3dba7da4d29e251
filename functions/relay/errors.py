"""
Exception types raised at each vendor seam.
"""


class RelayError(Exception):
    """Base class for errors the HTTP layer knows how to map."""


class ConfigurationError(RelayError):
    pass


class TokenIssueError(RelayError):
    pass


class PushDispatchError(RelayError):
    """The whole push send failed (as opposed to individual tokens)."""


class ModerationError(RelayError):
    """The upstream classifier rejected the call or could not be reached."""


class IdentityError(RelayError):
    pass

"""Error taxonomy shared by the account, resolver and message services.

Services raise these; ``main.py`` turns them into JSON responses. Relay-side
failures are never raised, they come back inside a ``DispatchResult``.
"""


class MailPortalError(Exception):
    """Base class for errors the HTTP layer knows how to translate"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MailPortalError):
    """Missing or malformed caller input"""

    status_code = 400


class NotFoundError(MailPortalError):
    """Id does not resolve inside the caller's ownership scope"""

    status_code = 404


class ConflictError(MailPortalError):
    """Mutation would break an account invariant"""

    status_code = 409


class CryptoError(MailPortalError):
    """Stored envelope cannot be decrypted (data corruption, not caller error)"""

    status_code = 500

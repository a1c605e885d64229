"""Domain errors.

Each error carries the HTTP status it maps to and a generic, user-facing
message. Messages never contain key material, IVs or ciphertext.
"""


class HealthVaultError(Exception):
    status_code = 400
    public_message = "Request could not be processed"

    def __init__(self, message: str = None):
        super().__init__(message or self.public_message)


class FormatError(HealthVaultError):
    """Malformed hex key, IV array or encryption metadata."""

    status_code = 422
    public_message = "Corrupted record: encryption data is malformed"


class AuthenticationError(HealthVaultError):
    """AEAD tag did not verify: wrong key, wrong IV or tampered ciphertext."""

    status_code = 400
    public_message = "Decryption failed: please retry or contact support"


class AuthorizationError(HealthVaultError):
    status_code = 403
    public_message = "Access not granted"


class InvalidTransitionError(HealthVaultError):
    status_code = 409
    public_message = "Access request already resolved"


class RecordNotFoundError(HealthVaultError):
    status_code = 404
    public_message = "Record not found"


class AccessRequestNotFoundError(HealthVaultError):
    status_code = 404
    public_message = "Access request not found"


class UserNotFoundError(HealthVaultError):
    status_code = 404
    public_message = "User not found"


class KeyUnavailableError(HealthVaultError):
    status_code = 404
    public_message = "No key material is available for this record"

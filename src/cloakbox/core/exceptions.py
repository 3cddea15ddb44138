"""
Exceptions for CloakBox
Every cryptographic failure surfaces as one of these so callers can catch CloakBoxError
"""


class CloakBoxError(Exception):
    # general container for errors
    pass


class IntegrityError(CloakBoxError):
    # raised when authenticated decryption fails (wrong key, tampered or corrupted ciphertext)
    pass


class FormatError(CloakBoxError):
    # raised when decryption succeeded but the plaintext is not the expected structure
    pass


class InvalidEnvelopeError(CloakBoxError):
    # raised when an envelope is missing or has empty components, before any crypto runs
    pass


class KeyUnavailableError(CloakBoxError):
    # raised when an operation needs session keys but the vault is not unlocked
    pass


class InvalidSaltError(CloakBoxError, ValueError):
    # raised when a salt is not exactly SALT_LENGTH bytes
    pass


class AuthenticationError(CloakBoxError):
    # raised when the server rejects the master password verifier
    pass


class CustodyError(CloakBoxError):
    # raised when private key custody cannot be established (setup failed or PKI state is ambiguous)
    pass


class BackendError(CloakBoxError):
    # raised by the server collaborator when a request fails
    pass


class AccountExistsError(BackendError):
    # raised when registering an existing account
    pass


class AccountNotFoundError(BackendError):
    # raised when the account DNE or the credentials are wrong
    pass

"""
auth/errors.py -- Error taxonomy shared by the credential, token, and RBAC layers.

Propagation policy:
  ValidationError, ConflictError  -- item-level during bootstrap. Captured into
      the report's per-item error arrays; the run continues.
  PersistenceError                -- fatal. The store is unreachable; the
      bootstrap run aborts and the error reaches the caller unchanged.
  AuthenticationError subclasses  -- raised synchronously at request time.
      Recoverable by re-authenticating. The HTTP layer maps each to a 401 code.

CredentialMismatch must never be shown to end users with its detail: the route
layer replies with a generic "invalid credentials" message so responses do not
reveal whether an account exists.

Layer rule: stdlib only. Both auth/ and rbac/ import from here.
"""


class RBACError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(RBACError):
    """A catalog declaration (or other caller input) is malformed."""


class ConflictError(RBACError):
    """A natural-key collision, typically from two concurrent bootstrap runs."""


class PersistenceError(RBACError):
    """The persistent store is unreachable. Fatal for the current operation."""


class AuthenticationError(RBACError):
    """Base class for authentication-time failures."""

    code = "unauthorized"


class TokenExpired(AuthenticationError):
    code = "token_expired"


class TokenMalformed(AuthenticationError):
    code = "token_malformed"


class SignatureMismatch(AuthenticationError):
    code = "signature_mismatch"


class CredentialMismatch(AuthenticationError):
    code = "invalid_credentials"

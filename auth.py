import hmac
from abc import ABC, abstractmethod

from config import ADMIN_PASSWORD


class CredentialChecker(ABC):
    """Decides whether a credential grants access to the admin endpoints."""

    @abstractmethod
    def verify(self, credential: str) -> bool:
        ...


class SharedSecretChecker(CredentialChecker):
    """Single shared admin password."""

    def __init__(self, secret: str = ADMIN_PASSWORD):
        self._secret = secret

    def verify(self, credential: str) -> bool:
        if not credential:
            return False
        return hmac.compare_digest(credential.encode("utf-8"), self._secret.encode("utf-8"))


def get_credential_checker() -> CredentialChecker:
    """FastAPI dependency, override it to plug in another check."""
    return SharedSecretChecker()

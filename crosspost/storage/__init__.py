from .credential_store import CredentialStore, InMemoryCredentialStore
from .database import SocialAccountRecord, SqlAlchemyCredentialStore, create_session_factory

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "SocialAccountRecord",
    "SqlAlchemyCredentialStore",
    "create_session_factory",
]

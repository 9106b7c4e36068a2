"""Infrastructure layer exports."""

from .credentials import AuthError, CredentialCache
from .documents import (
    DocumentRenderer,
    PdfRenderer,
    configure_document_renderer,
    fill_template,
    get_document_renderer,
    load_template,
)
from .jobs import InMemoryJobRepository, JobRepository
from .registry import (
    LookupTrace,
    NoMatchError,
    RegistryClient,
    RegistryClientProtocol,
    RegistryLookupError,
    RetryableStatusError,
    configure_registry_client,
    get_registry_client,
)

__all__ = [
    "AuthError",
    "CredentialCache",
    "DocumentRenderer",
    "InMemoryJobRepository",
    "JobRepository",
    "LookupTrace",
    "NoMatchError",
    "PdfRenderer",
    "RegistryClient",
    "RegistryClientProtocol",
    "RegistryLookupError",
    "RetryableStatusError",
    "configure_document_renderer",
    "configure_registry_client",
    "fill_template",
    "get_document_renderer",
    "get_registry_client",
    "load_template",
]

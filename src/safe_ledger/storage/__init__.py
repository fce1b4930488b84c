"""Persistent storage - Ledger of synced transfers and their annotations."""

from safe_ledger.storage.database import (
    create_engine,
    create_session_factory,
    init_models,
    session_scope,
)
from safe_ledger.storage.models import (
    Base,
    CategoryModel,
    OrganizationModel,
    SafeModel,
    TransferCategoryModel,
    TransferModel,
)
from safe_ledger.storage.repos import (
    CategoryDTO,
    CategoryRepository,
    OrganizationDTO,
    OrganizationRepository,
    SafeDTO,
    SafeRepository,
    TransferCategoryDTO,
    TransferDTO,
    TransferRepository,
)

__all__ = [
    # Database
    "create_engine",
    "create_session_factory",
    "init_models",
    "session_scope",
    # Models
    "Base",
    "CategoryModel",
    "OrganizationModel",
    "SafeModel",
    "TransferCategoryModel",
    "TransferModel",
    # Repositories
    "CategoryDTO",
    "CategoryRepository",
    "OrganizationDTO",
    "OrganizationRepository",
    "SafeDTO",
    "SafeRepository",
    "TransferCategoryDTO",
    "TransferDTO",
    "TransferRepository",
]

from .document_repository import DocumentRepository
from .key_directory import UserKeyDirectory

__all__ = ['DocumentRepository', 'UserKeyDirectory']

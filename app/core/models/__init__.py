from app.core.models.document import Document

__all__ = [
    "Document",
]

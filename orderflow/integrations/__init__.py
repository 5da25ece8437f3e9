"""External collaborators: document rendering and artifact storage."""
from .artifact_store import ArtifactStore
from .renderer import DocumentRenderer, RendererClient, TextDocumentRenderer

__all__ = ["ArtifactStore", "DocumentRenderer", "RendererClient", "TextDocumentRenderer"]

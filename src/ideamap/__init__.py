"""ideamap: product idea to editable mind map."""

__version__ = "0.1.0"

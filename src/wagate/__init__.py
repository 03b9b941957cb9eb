"""wagate: REST control plane for multi-tenant chat protocol sessions."""

__version__ = "0.1.0"

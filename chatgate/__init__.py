"""SharePoint chat widget gateway for a conversational-AI upstream."""

__version__ = "0.1.0"

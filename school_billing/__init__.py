"""School billing backend: periodic course invoicing for a multi-branch school."""

__version__ = "0.1.0"

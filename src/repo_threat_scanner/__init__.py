"""Static threat scanner for TypeScript/JavaScript source trees."""

__version__ = "0.1.0"

"""apicompare - differential testing of Filecoin JSON-RPC nodes."""

__version__ = "0.1.0"

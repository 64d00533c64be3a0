"""Test runner command contract and output diagnostics."""

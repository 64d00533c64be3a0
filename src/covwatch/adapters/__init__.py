"""Adapters for external tool output: coverage reports and test runners."""

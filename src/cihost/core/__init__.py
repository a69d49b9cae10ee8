"""Polling, retry and error classification."""

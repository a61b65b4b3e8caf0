"""Shared utilities: time, cost, logging and console output."""

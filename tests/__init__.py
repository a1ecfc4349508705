"""Test suite for the help-desk SLA engine."""

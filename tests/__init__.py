"""Test suite for Blocklift."""

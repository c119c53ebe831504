"""Persistence for blocks and assignments."""

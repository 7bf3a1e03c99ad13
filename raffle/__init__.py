"""Pantry raffle state service."""

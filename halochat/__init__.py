"""Conversational session and turn-dispatch core for the Halo chat client."""

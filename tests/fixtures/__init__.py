"""Test fixtures: Clever API payload builders and a scripted API client."""

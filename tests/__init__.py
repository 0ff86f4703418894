"""
Test package for the WhatsApp AI relay bot

Unit tests for the relay orchestrator, its collaborators and the transports'
parsing helpers. External services are replaced with in-memory fakes.
"""

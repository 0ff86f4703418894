"""
WhatsApp AI relay bot.

Receives chat messages through a session transport, forwards the text to a
hosted language model and relays the reply back to the sender.
"""

__version__ = "1.0.0"

#!/usr/bin/env python3
"""
Entry point for the WhatsApp AI relay bot.

Equivalent to the `relaybot` console script.
"""

from relaybot.main import main

if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Telegram Bot for relaying Google Drive files
Dependencies: pyrogram, requests, python-magic, python-dotenv
"""

import sys

from drivebot.bot import main

if __name__ == '__main__':
    sys.exit(main())

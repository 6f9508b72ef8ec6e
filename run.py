#!/usr/bin/env python
"""Entry point for recruiter CLI."""

# Load .env file before anything else
from dotenv import load_dotenv
load_dotenv()

from recruiter.core.cli import main

if __name__ == "__main__":
    main()

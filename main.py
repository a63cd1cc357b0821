#!/usr/bin/env python3
"""
Wrapper script for email_scheduler.app.
Runs the scheduler service from a source checkout.
"""

import sys

from email_scheduler.app import main

if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Backup runner, meant to be called from cron"""
import sys
from dbkeeper.cli import main

if __name__ == '__main__':
    sys.exit(main())

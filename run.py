#!/usr/bin/env python3
"""Backup runner"""
import os

from dirbackup.cli import main

if __name__ == '__main__':
    # Use development config for local runs unless told otherwise
    os.environ.setdefault('DIRBACKUP_ENV', 'development')

    main()

# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Core settings, constants, exceptions, and logging."""

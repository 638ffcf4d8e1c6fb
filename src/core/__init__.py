# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the EduGuard risk engine.

This package contains the core business logic and shared utilities:
- config: Application configuration and settings
- risk: Signal evaluators, flag aggregation, risk levels and sweeps
"""

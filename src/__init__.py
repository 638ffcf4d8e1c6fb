"""EduGuard risk engine.

Rule-based detection of students at risk of dropping out or falling
behind, with guardian and staff alerting.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"

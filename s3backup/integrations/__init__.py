# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework integrations for the backup service.

Available integrations:
- FastAPI: create_app, register_backup_routes
"""

from s3backup.integrations.fastapi import (
    create_app,
    get_backup_state,
    register_backup_routes,
)

__all__ = ["create_app", "get_backup_state", "register_backup_routes"]

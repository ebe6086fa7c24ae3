"""
Credits Module
Usage metering and premium entitlements for AI features in AutoDiag

This module provides:
- Per-user usage records (free tier + premium tier)
- Concurrency-safe atomic consumption of one use
- Single-use premium passcodes (admin generation, user redemption)
- Route guard for metered AI features

Collections used:
- user_credits: Per-user usage counters and premium expiry
- passcodes: Administrator-issued activation codes
- user_roles: Capability lookup for admin-only operations
- credits_meta: Init version stamp
"""

__version__ = "1.0.0"

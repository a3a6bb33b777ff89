# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Deffatest Slack Bot.

This package relays Deffatest test-run webhooks into Slack and keeps the
workspace and user credentials it needs encrypted at rest.
"""

__version__ = "1.0.0"

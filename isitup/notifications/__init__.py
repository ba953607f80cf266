"""Outbound notifications for site status transitions."""

from .discord import DiscordNotifier, build_embed, resolve_webhook_url

"""
Discord Channel - Webhook delivery.
"""
from __future__ import annotations

from typing import Any

from .protocol import Channel, ChannelKind, PreparedMessage
from .webhook import WebhookAdapter

DISCORD_MAX_CONTENT_LENGTH = 2000


class DiscordWebhookAdapter(WebhookAdapter):
    """Discord webhook: https://discord.com/api/webhooks/<id>/<token>"""

    kind = ChannelKind.DISCORD_WEBHOOK
    label = "discord webhook"
    allowed_hosts = frozenset({
        "discord.com",
        "discordapp.com",
        "canary.discord.com",
        "ptb.discord.com",
    })
    example_host = "discord.com"
    path_prefix = "/api/webhooks/"
    min_path_segments = 2

    def build_payload(self, message: PreparedMessage, channel: Channel) -> dict[str, Any]:
        content = message.text
        if len(content) > DISCORD_MAX_CONTENT_LENGTH:
            content = content[: DISCORD_MAX_CONTENT_LENGTH - 3] + "..."
        return {"content": content}

"""
Slack Channel - Incoming Webhook delivery.
"""
from __future__ import annotations

from .protocol import ChannelKind
from .webhook import WebhookAdapter


class SlackWebhookAdapter(WebhookAdapter):
    """Slack Incoming Webhook: https://hooks.slack.com/services/T.../B.../X..."""

    kind = ChannelKind.SLACK_WEBHOOK
    label = "slack webhook"
    allowed_hosts = frozenset({"hooks.slack.com"})
    example_host = "hooks.slack.com"
    path_prefix = "/services/"
    min_path_segments = 3

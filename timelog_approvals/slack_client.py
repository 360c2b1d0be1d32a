"""Thin wrapper utilities around the Slack WebClient."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from slack_sdk import WebClient


class SlackClient:
    """Encapsulate the Slack WebClient calls the approval workflow makes."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        return self._client

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]] | None = None,
    ) -> Mapping[str, Any]:
        """Post a message, with Block Kit content when *blocks* is given."""

        if blocks is None:
            return self._client.chat_postMessage(channel=channel, text=text)
        return self._client.chat_postMessage(channel=channel, text=text, blocks=list(blocks))

    def update_message(
        self,
        *,
        channel: str,
        ts: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> Mapping[str, Any]:
        return self._client.chat_update(channel=channel, ts=ts, text=text, blocks=list(blocks))

    def post_ephemeral(self, *, channel: str, user: str, text: str) -> Mapping[str, Any]:
        return self._client.chat_postEphemeral(channel=channel, user=user, text=text)

    def send_direct_message(self, *, user: str, text: str) -> Mapping[str, Any]:
        """Open (or reuse) the DM channel with *user* and post *text* there."""

        conversation = self._client.conversations_open(users=user)
        channel_id = conversation["channel"]["id"]
        return self.post_message(channel=channel_id, text=text)

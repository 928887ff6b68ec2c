"""Remote store boundary: protocol plus the httpx-backed implementation."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from playsync.settings import settings

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Raised when the authoritative store rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RemoteStore(Protocol):
    """Operations the sync layer needs from the authoritative store.

    Records are returned as plain JSON-like mappings; the domain layer
    normalizes them.
    """

    async def list_friends(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    async def list_invitations(self, user_id: str, direction: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    async def send_invitation(self, from_user_id: str, to_user_id: str) -> Dict[str, Any]:
        ...

    async def respond_invitation(self, invitation_id: str, action: str, user_id: str) -> Dict[str, Any]:
        ...

    async def cancel_invitation(self, invitation_id: str, user_id: str) -> Dict[str, Any]:
        ...

    async def remove_friend(self, user_id: str, friend_id: str) -> Dict[str, Any]:
        ...

    async def block_user(self, user_id: str, target_id: str) -> Dict[str, Any]:
        ...

    async def list_messages(
        self,
        user_id: str,
        peer_id: str,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        ...

    async def send_message(
        self,
        user_id: str,
        peer_id: str,
        content: str,
        client_msg_id: str,
    ) -> Dict[str, Any]:
        ...

    async def mark_read(self, user_id: str, peer_id: str) -> None:
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or "Something went wrong"


def _unwrap(body: Any, field: str) -> Any:
    """Accept both `{field: ...}` envelopes and bare payloads."""
    if isinstance(body, Mapping) and isinstance(body.get(field), (list, Mapping)):
        return body[field]
    return body


class HttpRemoteStore:
    """Talks to the platform's JSON API with an `httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        if client is None:
            base = base_url or settings.remote_base_url
            if not base:
                raise ValueError("HttpRemoteStore requires a base URL")
            client = httpx.AsyncClient(
                base_url=base,
                timeout=timeout if timeout is not None else settings.remote_timeout_seconds,
                headers={"Content-Type": "application/json"},
            )
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Remote call %s %s failed: %s", method, url, exc)
            raise RemoteStoreError(str(exc) or exc.__class__.__name__) from exc
        if response.is_error:
            message = _error_message(response)
            logger.warning("Remote call %s %s returned %s: %s", method, url, response.status_code, message)
            raise RemoteStoreError(message, response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteStoreError("Invalid JSON response", response.status_code) from exc

    async def list_friends(self, user_id: str) -> List[Dict[str, Any]]:
        body = await self._request("GET", f"/api/users/{user_id}/friends")
        return list(_unwrap(body, "friends") or [])

    async def list_invitations(self, user_id: str, direction: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"userId": user_id}
        if direction:
            params["type"] = direction
        body = await self._request("GET", "/api/friend-invitations", params=params)
        return list(_unwrap(body, "invitations") or [])

    async def send_invitation(self, from_user_id: str, to_user_id: str) -> Dict[str, Any]:
        body = await self._request(
            "POST",
            "/api/friend-invitations",
            json={"fromUserId": from_user_id, "toUserId": to_user_id},
        )
        return _unwrap(body, "invitation") or {}

    async def respond_invitation(self, invitation_id: str, action: str, user_id: str) -> Dict[str, Any]:
        body = await self._request(
            "POST",
            f"/api/friend-invitations/{invitation_id}/respond",
            json={"action": action, "userId": user_id},
        )
        return _unwrap(body, "invitation") or {}

    async def cancel_invitation(self, invitation_id: str, user_id: str) -> Dict[str, Any]:
        body = await self._request(
            "DELETE",
            f"/api/friend-invitations/{invitation_id}",
            json={"userId": user_id},
        )
        return body or {}

    async def remove_friend(self, user_id: str, friend_id: str) -> Dict[str, Any]:
        body = await self._request(
            "DELETE",
            f"/api/users/{user_id}/friends",
            json={"friendId": friend_id, "action": "remove"},
        )
        return body or {}

    async def block_user(self, user_id: str, target_id: str) -> Dict[str, Any]:
        body = await self._request(
            "DELETE",
            f"/api/users/{user_id}/friends",
            json={"friendId": target_id, "action": "block"},
        )
        return body or {}

    async def list_messages(
        self,
        user_id: str,
        peer_id: str,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        body = await self._request(
            "GET",
            f"/api/chat/{peer_id}",
            params={"userId": user_id, "page": page, "limit": limit},
        )
        return list(_unwrap(body, "messages") or [])

    async def send_message(
        self,
        user_id: str,
        peer_id: str,
        content: str,
        client_msg_id: str,
    ) -> Dict[str, Any]:
        body = await self._request(
            "POST",
            f"/api/chat/{peer_id}",
            json={"content": content, "senderId": user_id, "clientMsgId": client_msg_id},
        )
        return _unwrap(body, "message") or {}

    async def mark_read(self, user_id: str, peer_id: str) -> None:
        await self._request("POST", f"/api/chat/{peer_id}/read", json={"userId": user_id})


__all__ = ["HttpRemoteStore", "RemoteStore", "RemoteStoreError"]

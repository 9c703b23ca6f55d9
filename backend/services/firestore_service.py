import asyncio
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import settings


def configure_client_environment() -> None:
    """Export the settings the Google client libraries read from the environment."""
    if settings.firestore_emulator_host:
        os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
    if settings.google_application_credentials:
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = settings.google_application_credentials


class FirestoreService:
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop.

    Layout:
      rooms/{room_id}                                   host_id, public_state
      rooms/{room_id}/members/{user_id}                 name, credits
      rooms/{room_id}/roles/{user_id}                   role (never listed to clients)
      rooms/{room_id}/votes/{mission}-{proposal}/ballots/{user_id}
      rooms/{room_id}/mission_cards/{mission}/cards/{user_id}

    Access control lives in SecretStore; this class only moves documents.
    """

    def __init__(self, db=None):
        if db is None:
            configure_client_environment()
            # Lazy import so the service can be instantiated before GCP creds exist
            from google.cloud import firestore
            db = firestore.Client(project=settings.google_cloud_project or None)
        self.db = db

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _room_ref(self, room_id: str):
        return self.db.collection("rooms").document(room_id)

    def _members_ref(self, room_id: str):
        return self._room_ref(room_id).collection("members")

    def _roles_ref(self, room_id: str):
        return self._room_ref(room_id).collection("roles")

    def _ballots_ref(self, room_id: str, mission: int, proposal: int):
        return (
            self._room_ref(room_id)
            .collection("votes")
            .document(f"{mission}-{proposal}")
            .collection("ballots")
        )

    def _cards_ref(self, room_id: str, mission: int):
        return (
            self._room_ref(room_id)
            .collection("mission_cards")
            .document(str(mission))
            .collection("cards")
        )

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ── Rooms ─────────────────────────────────────────────────────────────────

    async def get_room(self, room_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._run(lambda: self._room_ref(room_id).get())
        if doc.exists:
            return doc.to_dict()
        return None

    async def create_room(self, room_id: str, host_id: str, public_state: Dict[str, Any]) -> Dict[str, Any]:
        """Raises google.api_core.exceptions.AlreadyExists if the room document exists."""
        now = self._now()
        data = {
            "room_id": room_id,
            "host_id": host_id,
            "public_state": public_state,
            "created_at": now,
            "updated_at": now,
        }
        await self._run(lambda: self._room_ref(room_id).create(data))
        return data

    async def set_public_state(self, room_id: str, public_state: Dict[str, Any]):
        await self._run(lambda: self._room_ref(room_id).update({
            "public_state": public_state,
            "updated_at": self._now(),
        }))

    # ── Members ───────────────────────────────────────────────────────────────

    async def upsert_member(self, room_id: str, user_id: str, name: str, credits: int):
        data = {"user_id": user_id, "name": name, "credits": credits, "joined_at": self._now()}
        await self._run(lambda: self._members_ref(room_id).document(user_id).set(data))

    async def get_member(self, room_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._run(lambda: self._members_ref(room_id).document(user_id).get())
        if doc.exists:
            return doc.to_dict()
        return None

    async def get_members(self, room_id: str) -> List[Dict[str, Any]]:
        docs = await self._run(lambda: list(self._members_ref(room_id).stream()))
        return [d.to_dict() for d in docs]

    # ── Roles ─────────────────────────────────────────────────────────────────

    async def replace_roles(self, room_id: str, roles: Dict[str, str]):
        """Delete any previous deal, then write one document per player."""
        def _replace():
            for doc in list(self._roles_ref(room_id).stream()):
                doc.reference.delete()
            for user_id, role in roles.items():
                self._roles_ref(room_id).document(user_id).set({"user_id": user_id, "role": role})
        await self._run(_replace)

    async def get_role(self, room_id: str, user_id: str) -> Optional[str]:
        doc = await self._run(lambda: self._roles_ref(room_id).document(user_id).get())
        if doc.exists:
            return doc.to_dict().get("role")
        return None

    async def get_roles(self, room_id: str) -> Dict[str, str]:
        docs = await self._run(lambda: list(self._roles_ref(room_id).stream()))
        return {d.id: d.to_dict().get("role") for d in docs}

    # ── Votes ─────────────────────────────────────────────────────────────────

    async def set_ballot(self, room_id: str, mission: int, proposal: int, user_id: str, vote: bool):
        await self._run(
            lambda: self._ballots_ref(room_id, mission, proposal).document(user_id).set({"vote": vote})
        )

    async def get_ballots(self, room_id: str, mission: int, proposal: int) -> Dict[str, bool]:
        docs = await self._run(lambda: list(self._ballots_ref(room_id, mission, proposal).stream()))
        return {d.id: bool(d.to_dict().get("vote")) for d in docs}

    async def clear_ballots(self, room_id: str, mission: int, proposal: int):
        def _clear():
            for doc in list(self._ballots_ref(room_id, mission, proposal).stream()):
                doc.reference.delete()
        await self._run(_clear)

    # ── Mission cards ─────────────────────────────────────────────────────────

    async def set_card(self, room_id: str, mission: int, user_id: str, card: str):
        await self._run(lambda: self._cards_ref(room_id, mission).document(user_id).set({"card": card}))

    async def get_cards(self, room_id: str, mission: int) -> Dict[str, str]:
        docs = await self._run(lambda: list(self._cards_ref(room_id, mission).stream()))
        return {d.id: d.to_dict().get("card") for d in docs}

    async def clear_cards(self, room_id: str, mission: int):
        def _clear():
            for doc in list(self._cards_ref(room_id, mission).stream()):
                doc.reference.delete()
        await self._run(_clear)


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> "FirestoreService":
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    Use as a FastAPI dependency: Depends(get_firestore_service)
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service

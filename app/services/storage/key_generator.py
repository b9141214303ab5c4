import re
import secrets
import string
from datetime import datetime, timezone
from pathlib import Path

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


class KeyGenerator:
    @staticmethod
    def _safe_filename(filename: str) -> str:
        return re.sub(r"[^a-zA-Z0-9_.-]", "_", filename)

    @staticmethod
    def _extension(filename: str | None) -> str:
        if not filename:
            return "bin"
        ext = Path(KeyGenerator._safe_filename(filename)).suffix.lower().lstrip(".")
        return ext or "bin"

    @staticmethod
    def _unique_name(filename: str | None, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(8))
        return f"{millis}-{suffix}.{KeyGenerator._extension(filename)}"

    @staticmethod
    def generate_object_key(
        kind: str,
        filename: str | None,
        owner_refs: dict[str, str] | None = None,
        *,
        now: datetime | None = None,
    ) -> str:
        now = now or datetime.now(timezone.utc)
        owner_refs = owner_refs or {}
        day = now.strftime("%Y-%m-%d")
        name = KeyGenerator._unique_name(filename, now)

        if kind == "document":
            return f"documents/{day}/{name}"

        elif kind == "chat":
            chat_id = owner_refs.get("chat_id")
            if not chat_id:
                raise ValueError("chat_id required for chat uploads")
            return f"chat/{chat_id}/{day}/{name}"

        elif kind == "kyc":
            user_id = owner_refs.get("user_id")
            if not user_id:
                raise ValueError("user_id required for kyc uploads")
            return f"kyc/{user_id}/{name}"

        elif kind == "ticket":
            ticket_id = owner_refs.get("ticket_id")
            if not ticket_id:
                raise ValueError("ticket_id required for ticket uploads")
            return f"tickets/{ticket_id}/{name}"

        else:
            raise ValueError(f"Unknown upload kind: {kind}")

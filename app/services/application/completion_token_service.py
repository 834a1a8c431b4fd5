"""
Completion Token Service
========================

Single-use links that let a user mark one scheduled action as done
without signing in (used in reminder emails).

Only the SHA-256 of the raw token is stored. Redemption marks the action
completed and consumes the token inside one write transaction, so a
token can never apply its effect twice.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable
from urllib.parse import urlencode

from app.domain.care_plan import PLAN_DAYS, Action, CompletionTokenRecord, PlantRecord, validate_day_index
from app.domain.exceptions import (
    NotFoundError,
    TokenAlreadyUsedError,
    TokenExpiredError,
)
from app.enums.care import NotificationEventType
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.services.protocols import Notifier
    from infrastructure.database.repositories.completion_tokens import CompletionTokenRepository
    from infrastructure.database.repositories.plants import PlantRepository
    from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DEFAULT_EXPIRY = timedelta(days=7)
COMPLETION_PATH = "/api/v1/plant-boxes/complete-task"


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass
class RedemptionResult:
    plant: PlantRecord
    action: Action
    day_index: int
    already_completed: bool = False

    def to_dict(self) -> dict:
        return {
            "plant_id": self.plant.id,
            "plant_name": self.plant.name,
            "day_index": self.day_index,
            "action": self.action.to_dict(),
            "already_completed": self.already_completed,
        }


class CompletionTokenService:
    """Issues and redeems completion tokens."""

    def __init__(
        self,
        tokens: "CompletionTokenRepository",
        plants: "PlantRepository",
        notifier: "Notifier | None" = None,
        audit_logger: "AuditLogger | None" = None,
        *,
        expiry: timedelta = DEFAULT_EXPIRY,
        base_url: str = "",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tokens = tokens
        self._plants = plants
        self._notifier = notifier
        self._audit = audit_logger
        self._expiry = expiry
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def build_completion_url(self, raw_token: str) -> str:
        return f"{self._base_url}{COMPLETION_PATH}?{urlencode({'token': raw_token})}"

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, plant_id: str, day_index: int, action_id: str, *, plant: PlantRecord | None = None) -> str:
        """
        Mint a token for one action and return the raw value.

        Raises:
            ValidationError: day index outside 0..6.
            NotFoundError: plant, plan or action does not exist.
        """
        validate_day_index(day_index)
        plant = plant or self._plants.get(plant_id)
        if plant is None:
            raise NotFoundError(f"Plant {plant_id} not found", detail={"plant_id": plant_id})
        if plant.care_plan is None or plant.care_plan.day(day_index).find_action(action_id) is None:
            raise NotFoundError(
                "Action not found in care plan",
                detail={"plant_id": plant_id, "day_index": day_index, "action_id": action_id},
            )

        now = self._clock()
        raw_token = secrets.token_hex(TOKEN_BYTES)
        self._tokens.create(
            CompletionTokenRecord(
                plant_id=plant_id,
                user_id=plant.user_id,
                day_index=day_index,
                action_id=action_id,
                token_hash=hash_token(raw_token),
                expires_at=now + self._expiry,
                created_at=now,
            )
        )
        if self._audit:
            self._audit.log_event(
                actor="system",
                action="issue_completion_token",
                resource=f"plant:{plant_id}",
                outcome="success",
                day_index=day_index,
                action_id=action_id,
            )
        return raw_token

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def redeem(self, raw_token: str) -> RedemptionResult:
        """
        Complete the action behind *raw_token*.

        A token that was already used returns ``already_completed=True``
        without touching the plan.

        Raises:
            NotFoundError: unknown token, or its plant/action is gone.
            TokenExpiredError: the token is past its expiry.
        """
        if not raw_token:
            raise NotFoundError("Completion token missing")
        record = self._tokens.find_by_hash(hash_token(raw_token))
        if record is None:
            self._audit_redeem("unknown", "not_found")
            raise NotFoundError("Completion token not found")

        now = self._clock()
        if record.is_expired(now):
            self._audit_redeem(record.plant_id, "expired")
            raise TokenExpiredError(
                "Completion token expired",
                detail={"expired_at": record.expires_at.isoformat()},
            )
        if record.used:
            self._audit_redeem(record.plant_id, "already_used")
            return self._already_completed(record)

        state: dict[str, bool] = {"newly_completed": False}

        def _complete(plant: PlantRecord) -> None:
            action = self._locate(plant, record)
            if not action.completed:
                action.completed = True
                action.completed_at = now
                state["newly_completed"] = True
            # joins the plant write transaction
            self._tokens.mark_used(record.id, now)

        try:
            plant = self._plants.update(record.plant_id, _complete)
        except TokenAlreadyUsedError:
            self._audit_redeem(record.plant_id, "already_used")
            return self._already_completed(record)

        action = self._locate(plant, record)
        self._audit_redeem(record.plant_id, "success" if state["newly_completed"] else "already_completed")
        if state["newly_completed"]:
            self._notify_completed(plant, record.day_index, action)
        return RedemptionResult(
            plant=plant,
            action=action,
            day_index=record.day_index,
            already_completed=not state["newly_completed"],
        )

    def purge_expired(self) -> int:
        return self._tokens.purge_expired(self._clock())

    # ------------------------------------------------------------------

    @staticmethod
    def _locate(plant: PlantRecord, record: CompletionTokenRecord) -> Action:
        action = None
        if plant.care_plan is not None and 0 <= record.day_index < PLAN_DAYS:
            action = plant.care_plan.day(record.day_index).find_action(record.action_id)
        if action is None:
            raise NotFoundError(
                "Action for completion token no longer exists",
                detail={"plant_id": record.plant_id, "action_id": record.action_id},
            )
        return action

    def _already_completed(self, record: CompletionTokenRecord) -> RedemptionResult:
        plant = self._plants.get(record.plant_id)
        if plant is None:
            raise NotFoundError(f"Plant {record.plant_id} not found")
        return RedemptionResult(
            plant=plant,
            action=self._locate(plant, record),
            day_index=record.day_index,
            already_completed=True,
        )

    def _notify_completed(self, plant: PlantRecord, day_index: int, action: Action) -> None:
        if self._notifier is None:
            return
        event = {
            "type": str(NotificationEventType.TASK_COMPLETED),
            "plant_id": plant.id,
            "plant_name": plant.name,
            "day_index": day_index,
            "tasks": [{"time": action.time, "description": action.description}],
        }
        try:
            result = self._notifier.notify(plant.user_id, event)
            logger.debug("Completion notification for %s: %s", plant.id, result)
        except Exception as exc:
            logger.warning("Completion notification for plant %s failed: %s", plant.id, exc)

    def _audit_redeem(self, plant_id: str, outcome: str) -> None:
        if self._audit:
            self._audit.log_event(
                actor="anonymous",
                action="redeem_completion_token",
                resource=f"plant:{plant_id}",
                outcome=outcome,
            )

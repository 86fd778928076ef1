"""
Categorization Orchestrator

Decides which category a new expense draft gets.

STATE MACHINE (four terminal outcomes):

    draft ──> MappingResolver ──match──> MAPPED
                   │ no match / lookup failed
                   v
              AI provider (raced against the deadline)
                   │
        ┌──────────┼────────────────┬──────────────────┐
   in time,      in time,       deadline hit      provider error /
   conf >= 0.75  conf < 0.75                      not configured
        │            │               │                  │
   AUTO_APPLIED  SUGGESTED       TIMED_OUT          TIMED_OUT
                                 (timed_out=True)   (timed_out=False,
                                                     error_code set)

DESIGN DECISION: The provider call runs in its own task. We wait on it
with a timeout; on timeout the task is cancelled and abandoned - we do
not wait for its cleanup, and any late exception is swallowed by a
done-callback so it never surfaces as "exception was never retrieved".

Every provider invocation, whatever its fate, is written to the AI log.
"""

import asyncio
import time
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.agents.categorizer import (
    CategorizationProvider,
    ProviderError,
    ProviderErrorCode,
)
from expense_ledger.audit import AuditLogger
from expense_ledger.categorization.resolver import MappingResolutionError, MappingResolver
from expense_ledger.config import get_settings
from expense_ledger.models.categorization import (
    AiErrorCode,
    AiLogEntry,
    CategorizationOutcome,
    MappingMatch,
    OutcomeKind,
    rank_suggestions,
)
from expense_ledger.models.expense import ExpenseDraft, MappingUpsertResult
from expense_ledger.services.mappings import MerchantMappingService
from expense_ledger.services.storage import CategoryStorageInterface

logger = structlog.get_logger()

_PROVIDER_ERROR_CODES = {
    ProviderErrorCode.PROVIDER_ERROR: AiErrorCode.PROVIDER_ERROR,
    ProviderErrorCode.INVALID_RESPONSE: AiErrorCode.INVALID_RESPONSE,
}


def _discard_late_result(task: asyncio.Task) -> None:
    # Retrieve the exception of an abandoned task so asyncio doesn't log it.
    if not task.cancelled():
        task.exception()


class CategorizationOrchestrator:
    """
    Composes the mapping resolver and the AI provider under a deadline.

    The provider is optional. Without one the AI path is skipped and
    the outcome is TIMED_OUT with error_code=provider_unavailable.
    """

    def __init__(
        self,
        resolver: MappingResolver,
        category_storage: CategoryStorageInterface,
        provider: Optional[CategorizationProvider] = None,
        mapping_service: Optional[MerchantMappingService] = None,
        audit_logger: Optional[AuditLogger] = None,
        deadline_ms: Optional[int] = None,
        auto_apply_confidence: Optional[float] = None,
        max_suggestions: Optional[int] = None,
    ):
        settings = get_settings().app
        self._resolver = resolver
        self._categories = category_storage
        self._provider = provider
        self._mapping_service = mapping_service
        self._audit = audit_logger or AuditLogger()
        self._deadline_ms = deadline_ms or settings.categorization_deadline_ms
        self._auto_apply_confidence = (
            auto_apply_confidence if auto_apply_confidence is not None
            else settings.auto_apply_confidence
        )
        self._max_suggestions = max_suggestions or settings.max_suggestions

    async def categorize(
        self,
        user_id: UUID,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
        expense_id: Optional[UUID] = None,
    ) -> CategorizationOutcome:
        """
        Categorize a draft.

        Never raises for mapping or provider failures; those degrade to
        an outcome without an applied category.
        """
        match = await self._resolve_mapping(user_id, draft.name, correlation_id)
        if match is not None:
            outcome = CategorizationOutcome(
                kind=OutcomeKind.MAPPED,
                auto_applied_category_id=match.category_id,
                confidence=match.confidence,
                match=match,
            )
        elif self._provider is None:
            outcome = CategorizationOutcome(
                kind=OutcomeKind.TIMED_OUT,
                error_code=AiErrorCode.PROVIDER_UNAVAILABLE,
            )
        else:
            outcome = await self._invoke_provider(
                user_id, draft, expense_id, correlation_id
            )

        await self._audit.log_categorization(
            user_id=user_id,
            outcome_kind=outcome.kind.value,
            confidence=outcome.confidence,
            latency_ms=outcome.latency_ms,
            error_code=outcome.error_code.value if outcome.error_code else None,
            correlation_id=correlation_id,
        )
        return outcome

    async def _resolve_mapping(
        self,
        user_id: UUID,
        merchant_name: str,
        correlation_id: Optional[UUID],
    ) -> Optional[MappingMatch]:
        try:
            return await self._resolver.resolve(user_id, merchant_name)
        except MappingResolutionError as e:
            await self._audit.log_resolution_failed(
                user_id=user_id,
                stage=e.code.value,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return None

    async def _suggest(self, draft: ExpenseDraft):
        categories = [
            category for category in await self._categories.list_categories()
            if not category.is_uncategorized
        ]
        return await self._provider.suggest(draft, categories)

    async def _invoke_provider(
        self,
        user_id: UUID,
        draft: ExpenseDraft,
        expense_id: Optional[UUID],
        correlation_id: Optional[UUID],
    ) -> CategorizationOutcome:
        started = time.perf_counter()
        task = asyncio.create_task(self._suggest(draft))
        try:
            done, _ = await asyncio.wait({task}, timeout=self._deadline_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        latency_ms = int((time.perf_counter() - started) * 1000)

        base = {
            "latency_ms": latency_ms,
            "provider": self._provider.provider_id,
            "model": self._provider.model,
        }

        if task not in done:
            task.cancel()
            task.add_done_callback(_discard_late_result)
            outcome = CategorizationOutcome(
                kind=OutcomeKind.TIMED_OUT,
                timed_out=True,
                error_code=AiErrorCode.PROVIDER_TIMEOUT,
                **base,
            )
        elif task.exception() is not None:
            error = task.exception()
            error_code = (
                _PROVIDER_ERROR_CODES[error.code]
                if isinstance(error, ProviderError)
                else AiErrorCode.PROVIDER_ERROR
            )
            logger.warning(
                "categorization_provider_failed",
                provider=self._provider.provider_id,
                error=str(error),
                error_code=error_code.value,
            )
            await self._audit.log_external_service_error(
                service=self._provider.provider_id,
                error_message=str(error),
                correlation_id=correlation_id,
            )
            outcome = CategorizationOutcome(
                kind=OutcomeKind.TIMED_OUT,
                error_code=error_code,
                **base,
            )
        else:
            suggestions = rank_suggestions(task.result(), self._max_suggestions)
            top = suggestions[0] if suggestions else None
            if top is not None and top.confidence >= self._auto_apply_confidence:
                outcome = CategorizationOutcome(
                    kind=OutcomeKind.AUTO_APPLIED,
                    auto_applied_category_id=top.category_id,
                    confidence=top.confidence,
                    suggestions=suggestions,
                    **base,
                )
            else:
                outcome = CategorizationOutcome(
                    kind=OutcomeKind.SUGGESTED,
                    confidence=top.confidence if top else None,
                    suggestions=suggestions,
                    **base,
                )

        await self._audit.record_ai_invocation(
            AiLogEntry(
                user_id=user_id,
                expense_id=expense_id,
                query_text=f"{draft.name} {draft.description or ''}".strip(),
                ai_category_id=outcome.auto_applied_category_id,
                confidence=outcome.confidence,
                suggestions=outcome.suggestions,
                provider=self._provider.provider_id,
                model=self._provider.model,
                latency_ms=latency_ms,
                timed_out=outcome.timed_out,
                error_code=outcome.error_code,
            )
        )
        return outcome

    async def learn_from_correction(
        self,
        user_id: UUID,
        merchant_name: str,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MappingUpsertResult:
        """
        Remember a user's explicit category choice for this merchant.

        Idempotent: repeating the same correction changes nothing.
        """
        if self._mapping_service is None:
            raise RuntimeError("learn_from_correction requires a mapping service")
        return await self._mapping_service.upsert_mapping(
            user_id=user_id,
            merchant_name=merchant_name,
            category_id=category_id,
            correlation_id=correlation_id,
        )

"""Multi-backend orchestration with retry, backoff and failover."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from switchyard.config import Config, ProviderSettings, get_config, normalize_provider_name
from switchyard.exceptions import (
    ConfigurationError,
    ProviderAPIError,
    ProviderNotAvailableError,
    ProvidersExhaustedError,
)
from switchyard.llm import KEY_REQUIRED_PROVIDERS, create_provider
from switchyard.llm.base import ConversationContext, LLMProvider, ProviderResponse, RequestOptions
from switchyard.logging import get_logger
from switchyard.storage import ApiCallRecord, Database

log = get_logger(__name__)

BackendFactory = Callable[[str, ProviderSettings, str | None], LLMProvider]
CredentialLookup = Callable[[str], str | None]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class ProviderEntry:
    """An initialized backend and its health state."""

    name: str
    rank: int
    backend: LLMProvider
    healthy: bool = True
    last_health_check: datetime | None = None


class ProviderOrchestrator:
    """Routes requests across ranked backends.

    Each backend gets up to ``max_retries_per_provider`` sequential attempts
    with exponential backoff before the next ranked backend is tried. Every
    attempt is written to the call log; a success on a backend other than
    the current one is recorded as a failover event.
    """

    def __init__(
        self,
        config: Config | None = None,
        database: Database | None = None,
        backend_factory: BackendFactory = create_provider,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.database = database
        self._backend_factory = backend_factory
        self._sleep = sleep
        # Built once in initialize(); the health loop only flips flags on entries.
        self._entries: tuple[ProviderEntry, ...] = ()
        self._current: str | None = None
        self._pinned: str | None = None
        self._health_task: asyncio.Task[None] | None = None

    async def initialize(
        self,
        ranked: list[str] | None = None,
        credential_lookup: CredentialLookup | None = None,
    ) -> list[str]:
        """Build and initialize each ranked backend, skipping the ones that fail.

        Raises:
            ConfigurationError: no backend could be initialized
        """
        names = [normalize_provider_name(n) for n in (ranked or self.config.providers.ranked)]
        lookup = credential_lookup or self.config.lookup_api_key
        log.debug("Initializing orchestrator", ranked=names)

        entries: list[ProviderEntry] = []
        for rank, name in enumerate(names):
            if any(entry.name == name for entry in entries):
                continue
            api_key = lookup(name)
            if not api_key and name in KEY_REQUIRED_PROVIDERS:
                log.debug("No API key found for provider", provider=name)
                continue
            try:
                backend = self._backend_factory(name, self.config.providers.settings_for(name), api_key)
                await backend.initialize()
            except Exception as e:
                log.warning("Failed to load provider", provider=name, error=str(e))
                continue
            entries.append(ProviderEntry(name=name, rank=rank, backend=backend))
            log.debug("Provider loaded", provider=name, model=backend.model)

        if not entries:
            raise ConfigurationError("No API providers available. Please configure at least one provider.")

        self._entries = tuple(entries)
        self._current = entries[0].name
        log.info("Orchestrator initialized", current=self._current, available=self.available_providers())

        if self.config.failover.enabled:
            self.start_health_checks()
        return self.available_providers()

    # Introspection

    @property
    def current_provider_name(self) -> str | None:
        return self._current

    def available_providers(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def _entry(self, name: str) -> ProviderEntry | None:
        key = normalize_provider_name(name)
        return next((entry for entry in self._entries if entry.name == key), None)

    def get_provider(self, name: str) -> LLMProvider | None:
        entry = self._entry(name)
        return entry.backend if entry else None

    def get_current_provider(self) -> LLMProvider | None:
        return self.get_provider(self._current) if self._current else None

    def provider_status(self) -> list[dict[str, Any]]:
        return [
            {
                "name": entry.name,
                "rank": entry.rank,
                "model": entry.backend.model,
                "healthy": entry.healthy,
                "last_health_check": entry.last_health_check,
                "current": entry.name == self._current,
            }
            for entry in self._entries
        ]

    def switch_provider(self, name: str) -> None:
        """Make a backend current and try it first on subsequent sends.

        Raises:
            ProviderNotAvailableError: name is not an initialized backend
        """
        entry = self._entry(name)
        if entry is None:
            raise ProviderNotAvailableError(name)
        previous = self._current
        self._current = entry.name
        self._pinned = entry.name
        log.info("Provider switched", from_provider=previous, to_provider=entry.name)

    # Sending

    def _send_order(self) -> list[ProviderEntry]:
        order = list(self._entries)
        if self.config.failover.skip_unhealthy:
            order = [e for e in order if e.healthy] + [e for e in order if not e.healthy]
        if self._pinned:
            order = [e for e in order if e.name == self._pinned] + [e for e in order if e.name != self._pinned]
        return order

    def _backoff_seconds(self, attempt: int) -> float:
        failover = self.config.failover
        delay_ms = min(failover.retry_delay_ms * 2**attempt, failover.max_retry_delay_ms)
        return delay_ms / 1000

    async def _log_call(self, record: ApiCallRecord) -> None:
        if self.database is not None:
            await self.database.log_api_call(record)

    async def send_message(
        self,
        message: str | None,
        context: ConversationContext,
        options: RequestOptions | None = None,
    ) -> ProviderResponse:
        """Send with retries and failover.

        Raises:
            ProvidersExhaustedError: every backend failed all of its attempts
        """
        max_retries = self.config.failover.max_retries_per_provider
        attempted: list[str] = []
        last_error: str | None = None

        for entry in self._send_order():
            attempted.append(entry.name)
            for attempt in range(max_retries):
                log.debug("Attempting message send", provider=entry.name, attempt=attempt + 1, max_retries=max_retries)
                started = time.monotonic()
                status_code: int | None = None
                try:
                    response = await entry.backend.send_message(message, context, options)
                    if not response.success:
                        error = response.error
                        status_code = error.status_code if error else 500
                        raise ProviderAPIError(
                            error.message if error else "Provider returned failure response",
                            status_code=status_code,
                        )
                except Exception as e:
                    last_error = str(e)
                    if status_code is None:
                        status_code = getattr(e, "status_code", None) or 500
                    log.warning(
                        "Provider attempt failed",
                        provider=entry.name,
                        attempt=attempt + 1,
                        status_code=status_code,
                        error=last_error,
                    )
                    await self._log_call(
                        ApiCallRecord(
                            provider=entry.name,
                            success=False,
                            status_code=status_code,
                            latency_ms=int((time.monotonic() - started) * 1000),
                            error_message=last_error,
                        )
                    )
                    if attempt < max_retries - 1:
                        await self._sleep(self._backoff_seconds(attempt))
                    continue

                latency_ms = int(response.metadata.get("latency_ms") or (time.monotonic() - started) * 1000)
                await self._log_call(
                    ApiCallRecord(
                        provider=entry.name,
                        success=True,
                        status_code=200,
                        request_id=response.metadata.get("request_id"),
                        latency_ms=latency_ms,
                        tokens_used=response.total_tokens,
                    )
                )
                if entry.name != self._current:
                    await self._handle_failover(self._current, entry.name, last_error, context)
                self._current = entry.name
                return response

            log.warning("All retries exhausted for provider", provider=entry.name)

        log.error("All providers failed", attempted=attempted, last_error=last_error)
        raise ProvidersExhaustedError(attempted, last_error)

    async def _handle_failover(
        self,
        from_provider: str | None,
        to_provider: str,
        last_error: str | None,
        context: ConversationContext,
    ) -> None:
        reason = f"Provider failure: {last_error}" if last_error else "Provider failure"
        log.info("Failover triggered", from_provider=from_provider, to_provider=to_provider, reason=reason)
        if self.database is not None:
            await self.database.log_failover(
                from_provider=from_provider,
                to_provider=to_provider,
                reason=reason,
                context_size=context.size_bytes(),
                success=True,
            )

    # Health

    async def _probe(self, entry: ProviderEntry) -> bool:
        try:
            healthy = bool(await entry.backend.health_check())
        except Exception as e:
            log.warning("Health check failed", provider=entry.name, error=str(e))
            healthy = False
        entry.healthy = healthy
        entry.last_health_check = datetime.now(UTC)
        return healthy

    async def check_health(self) -> dict[str, bool]:
        """Probe every backend once; only health flags change."""
        results = await asyncio.gather(*(self._probe(entry) for entry in self._entries))
        status = {entry.name: result for entry, result in zip(self._entries, results)}
        log.debug("Health check sweep", status=status)
        return status

    async def _health_loop(self) -> None:
        interval = self.config.failover.health_check_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.check_health()

    def start_health_checks(self) -> None:
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.create_task(self._health_loop())
        log.debug("Health check monitoring started", interval_ms=self.config.failover.health_check_interval_ms)

    async def stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Health check monitoring stopped")

    async def shutdown(self) -> None:
        await self.stop_health_checks()
        for entry in self._entries:
            await entry.backend.close()
        log.info("Orchestrator shutdown")

"""Routing of generation requests across providers with failover.

Two strategies are supported:

* ``config``: call the primary provider; on failure fall back to the
  secondary and then the tertiary.
* ``abtest``: split conversations between primary and secondary by
  percentage. The split is a pure function of the routing key and the routing
  epoch, so a conversation keeps its provider across processes and restarts
  until the epoch changes. After the chosen provider fails the other one and
  then the tertiary are tried.

Each provider has a circuit breaker: after ``CIRCUIT_BREAKER_THRESHOLD``
consecutive failures it is skipped for ``CIRCUIT_BREAKER_RESET_SECONDS``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from ..core.settings import Settings
from ..errors import ProviderError
from .providers import CompletionRequest, CompletionResponse, LLMProvider

logger = logging.getLogger(__name__)

CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_RESET_SECONDS = 60.0

RoutingStrategy = Literal["config", "abtest"]


@dataclass(frozen=True)
class RoutingConfig:
    primary: str
    secondary: str | None = None
    tertiary: str | None = None
    strategy: RoutingStrategy = "config"
    ab_split_percent: int = 50
    epoch: str = "1"
    timeout_seconds: float = 30.0
    health_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoutingConfig":
        strategy = settings.routing_strategy.replace("_", "")
        if strategy not in ("config", "abtest"):
            logger.warning("Unknown routing strategy %r; using config", settings.routing_strategy)
            strategy = "config"
        return cls(
            primary=settings.primary_provider,
            secondary=settings.secondary_provider,
            tertiary=settings.tertiary_provider,
            strategy=strategy,  # type: ignore[arg-type]
            ab_split_percent=max(0, min(100, settings.ab_split_percent)),
            epoch=settings.routing_epoch,
            timeout_seconds=settings.llm_timeout_seconds,
            health_timeout_seconds=settings.llm_health_timeout_seconds,
        )


def ab_bucket(routing_key: str, epoch: str) -> int:
    """Stable bucket in ``[0, 100)`` for ``routing_key`` under ``epoch``."""

    digest = hashlib.sha256(f"{epoch}:{routing_key}".encode("utf-8")).hexdigest()
    return int(digest, 16) % 100


@dataclass
class _BreakerState:
    failures: int = 0
    open_until: float = 0.0


class ModelRouter:
    def __init__(
        self,
        config: RoutingConfig,
        providers: Mapping[str, LLMProvider],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config.primary not in providers:
            raise ValueError(
                f'Primary provider "{config.primary}" not available. '
                f"Configured providers: {', '.join(sorted(providers)) or 'none'}"
            )
        for optional in (config.secondary, config.tertiary):
            if optional and optional not in providers:
                logger.warning("Fallback provider %s has no credentials; skipping it", optional)
        self._config = config
        self._providers = dict(providers)
        self._clock = clock
        self._breakers: dict[str, _BreakerState] = {}
        logger.info(
            "Model router initialised (strategy=%s primary=%s secondary=%s tertiary=%s)",
            config.strategy,
            config.primary,
            config.secondary,
            config.tertiary,
        )

    @property
    def config(self) -> RoutingConfig:
        return self._config

    def provider_order(self, routing_key: str | None = None) -> list[str]:
        """Providers in the order they will be attempted for ``routing_key``."""

        cfg = self._config
        order: list[str] = []
        if cfg.strategy == "abtest" and cfg.secondary:
            if ab_bucket(routing_key or "", cfg.epoch) < cfg.ab_split_percent:
                order.extend([cfg.primary, cfg.secondary])
            else:
                order.extend([cfg.secondary, cfg.primary])
        for name in (cfg.primary, cfg.secondary, cfg.tertiary):
            if name and name not in order:
                order.append(name)
        return [name for name in order if name in self._providers]

    async def generate(
        self, request: CompletionRequest, *, routing_key: str | None = None
    ) -> CompletionResponse:
        attempts = 0
        last_error: BaseException | None = None
        order = self.provider_order(routing_key)
        for index, name in enumerate(order):
            if self._is_open(name):
                logger.debug("Circuit breaker open for %s; skipping", name)
                continue
            provider = self._providers[name]
            attempts += 1
            try:
                response = await asyncio.wait_for(
                    provider.complete(request), self._config.timeout_seconds
                )
            except Exception as exc:
                last_error = exc
                self._record_failure(name)
                logger.warning(
                    "Provider %s failed (attempt %d of %d): %s",
                    name,
                    index + 1,
                    len(order),
                    exc or type(exc).__name__,
                )
                continue
            self._reset(name)
            if index > 0:
                logger.info("Failover to %s succeeded", name)
            logger.info(
                "Generation served by %s/%s in %.0fms (%d tokens)",
                response.provider,
                response.model,
                response.latency_ms,
                response.usage.total_tokens,
            )
            return response

        if attempts == 0:
            message = "All generation providers are unavailable (circuit breakers open)"
        else:
            message = f"All generation providers failed. Last error: {last_error}"
        raise ProviderError(message, attempts=attempts, last_error=last_error)

    async def health_check(self) -> dict[str, dict[str, Any]]:
        async def probe(name: str, provider: LLMProvider) -> tuple[str, dict[str, Any]]:
            started = time.perf_counter()
            try:
                healthy = await asyncio.wait_for(
                    provider.health_check(), self._config.health_timeout_seconds
                )
            except Exception as exc:
                return name, {
                    "status": "error",
                    "latency_ms": round((time.perf_counter() - started) * 1000, 1),
                    "error": str(exc) or type(exc).__name__,
                }
            return name, {
                "status": "ok" if healthy else "error",
                "latency_ms": round((time.perf_counter() - started) * 1000, 1),
            }

        results = await asyncio.gather(
            *(probe(name, provider) for name, provider in self._providers.items())
        )
        return dict(results)

    def is_fully_open(self) -> bool:
        """Whether every configured provider currently has an open breaker."""

        return all(self._is_open(name) for name in self.provider_order())

    def _is_open(self, name: str) -> bool:
        state = self._breakers.get(name)
        return state is not None and self._clock() < state.open_until

    def _record_failure(self, name: str) -> None:
        state = self._breakers.setdefault(name, _BreakerState())
        state.failures += 1
        if state.failures >= CIRCUIT_BREAKER_THRESHOLD:
            state.open_until = self._clock() + CIRCUIT_BREAKER_RESET_SECONDS
            logger.error(
                "Circuit breaker opened for %s after %d failures", name, state.failures
            )

    def _reset(self, name: str) -> None:
        state = self._breakers.get(name)
        if state is not None:
            state.failures = 0
            state.open_until = 0.0

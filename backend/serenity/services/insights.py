# insight orchestrator — fans the six agents out over one snapshot and joins them
# each agent settles independently into a tagged outcome; failures become the
# role's fallback value so the bundle is always complete

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from serenity.config import settings
from serenity.errors import AgentOutputError, GenerationBackendError
from serenity.models.dashboard import InsightsBundle, RawSnapshot
from serenity.services.agents import AGENT_SPECS, AgentRole, AgentSpec, GenerationBackend, run_agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentOutcome:
    """result of one agent: its parsed value, or its fallback plus the error"""
    role: AgentRole
    value: Any
    error: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.error is not None


async def _settle(
    backend: GenerationBackend,
    spec: AgentSpec,
    snapshot: RawSnapshot,
    timeout: Optional[float],
) -> AgentOutcome:
    try:
        call = run_agent(backend, spec, spec.select(snapshot))
        if timeout is not None:
            value = await asyncio.wait_for(call, timeout=timeout)
        else:
            value = await call
        return AgentOutcome(role=spec.role, value=value)
    except (AgentOutputError, GenerationBackendError) as e:
        error = str(e)
    except asyncio.TimeoutError:
        error = f"timed out after {timeout}s"
    except Exception as e:
        logger.exception(f"Unexpected error in insight agent {spec.role.value}")
        error = f"unexpected error: {e}"

    logger.warning(f"Agent {spec.role.value} failed, using fallback: {error}")
    return AgentOutcome(role=spec.role, value=spec.fallback_for(), error=error)


async def run_agents(
    snapshot: RawSnapshot,
    backend: GenerationBackend,
    timeout: Optional[float] = None,
) -> dict[AgentRole, AgentOutcome]:
    """launch every agent concurrently and wait for all of them to settle"""
    specs = list(AGENT_SPECS.values())
    outcomes = await asyncio.gather(*(_settle(backend, spec, snapshot, timeout) for spec in specs))
    return {outcome.role: outcome for outcome in outcomes}


async def generate_insights(snapshot: RawSnapshot, backend: GenerationBackend) -> InsightsBundle:
    """run all insight agents and merge them into one bundle; never raises for agent failures"""
    outcomes = await run_agents(snapshot, backend, timeout=settings.AGENT_TIMEOUT_SECONDS)

    failed = [role.value for role, outcome in outcomes.items() if outcome.used_fallback]
    if failed:
        logger.warning(f"{len(failed)} of {len(outcomes)} insight agents fell back: {', '.join(failed)}")
    else:
        logger.info("All insight agents completed")

    return InsightsBundle(
        effectiveness=outcomes[AgentRole.EFFECTIVENESS].value,
        significantPatterns=outcomes[AgentRole.SIGNIFICANT_PATTERNS].value,
        correlations=outcomes[AgentRole.CORRELATIONS].value,
        temporalTrends=outcomes[AgentRole.TEMPORAL_TRENDS].value,
        recommendations=outcomes[AgentRole.RECOMMENDATIONS].value,
        responseAnalysis=outcomes[AgentRole.RESPONSE_ANALYSIS].value,
    )

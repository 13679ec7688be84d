"""
Multi-agent analysis pipeline.

Graph: harvest_market -> harvest_social -> analyze -> synthesize -> assemble.
The analyze node runs the social and technical agents concurrently; every
generation call goes through the shared RetryingExecutor (and so the Pacer).

Failure policy:
- harvest failures degrade to empty context
- unparseable agent output degrades to the agent's safe default
- provider exhaustion (or anything else unexpected) aborts the run with a
  PipelineError tagged with the stage in progress; nothing is cached
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict

from langgraph.graph import END, StateGraph
from prometheus_client import Counter, Histogram

from schemas.analysis_report import AnalysisReport
from utils.common_helpers import normalize_ticker

from . import prompts
from .assembler import (
    DEFAULT_MAX_SOURCES,
    SocialFragment,
    TechnicalFragment,
    build_report,
    collect_sources,
    narrator_variables,
    parse_social,
    parse_technical,
)
from .collaborators import GenerationProvider, SearchHit, SearchProvider, format_hits_for_prompt
from .errors import ConfigurationError, PipelineError
from .executor import RetryingExecutor
from .progress import ProgressObserver, SafeObserver, Stage
from .result_cache import ResultCache

logger = logging.getLogger(__name__)

DEFAULT_SOCIAL_DOMAINS: Tuple[str, ...] = ("reddit.com", "stocktwits.com", "news.ycombinator.com")

TASK_SOCIAL = "social-analysis"
TASK_TECHNICAL = "technical-analysis"
TASK_NARRATOR = "narrator-synthesis"

# Metrics
STAGE_DURATION = Histogram(
    "analysis_stage_duration_seconds",
    "Time spent per pipeline stage",
    ["stage"],
)
ANALYSIS_FAILURES = Counter(
    "ticker_analysis_failures_total",
    "Total failed ticker analyses",
    ["stage"],
)
ANALYSIS_SUCCESS = Counter(
    "ticker_analysis_success_total",
    "Total completed ticker analyses",
)
CACHE_HITS = Counter(
    "ticker_analysis_cache_hits_total",
    "Analyses served from the result cache",
)


@dataclass(frozen=True)
class PipelineOptions:
    market_recency_days: int = 7
    social_recency_days: int = 30
    social_fallback_recency_days: int = 90
    social_domains: Tuple[str, ...] = DEFAULT_SOCIAL_DOMAINS
    max_sources: int = DEFAULT_MAX_SOURCES
    dedupe_inflight: bool = False


@dataclass
class _RunContext:
    ticker: str
    company_name: str
    run_id: str
    observer: SafeObserver
    stage: Optional[Stage] = None

    @property
    def log_prefix(self) -> str:
        return f"[{self.run_id}] "

    def enter(self, stage: Stage) -> None:
        self.stage = stage
        logger.info("%sstage stage=%s", self.log_prefix, stage.value)
        self.observer.stage_started(stage)


class PipelineState(TypedDict, total=False):
    ctx: _RunContext
    market_hits: List[SearchHit]
    social_hits: List[SearchHit]
    social: SocialFragment
    technical: TechnicalFragment
    memo: str
    report: AnalysisReport


class AnalysisPipeline:
    def __init__(
        self,
        *,
        executor: RetryingExecutor,
        search: SearchProvider,
        generation: GenerationProvider,
        cache: ResultCache,
        social_search: Optional[SearchProvider] = None,
        options: Optional[PipelineOptions] = None,
    ):
        self.executor = executor
        self.search = search
        self.social_search = social_search
        self.generation = generation
        self.cache = cache
        self.options = options if options is not None else PipelineOptions()
        self._inflight: Dict[str, "asyncio.Task[AnalysisReport]"] = {}
        self._graph = self._build_graph()

    # ========================================================================
    # PUBLIC
    # ========================================================================

    async def analyze(
        self,
        ticker: str,
        company_name: Optional[str] = None,
        observer: Optional[ProgressObserver] = None,
        *,
        force_refresh: bool = False,
    ) -> AnalysisReport:
        """
        Produce a report for `ticker`, from cache when fresh.

        The returned report is a private copy. The observer is closed once
        the run settles, whatever the outcome.
        """
        key = normalize_ticker(ticker)
        safe_observer = SafeObserver(observer, log_context=f"[{key}] ")
        try:
            if not key:
                raise ValueError("ticker is required")
            self._check_configured()

            if not force_refresh:
                cached = self.cache.get(key)
                if cached is not None:
                    CACHE_HITS.inc()
                    logger.info("[%s] cache-hit", key)
                    return cached.model_copy(deep=True)

            name = (company_name or "").strip() or key

            if not self.options.dedupe_inflight:
                report = await self._run(key, name, safe_observer)
                return report.model_copy(deep=True)

            running = self._inflight.get(key)
            if running is not None and not running.done():
                logger.info("[%s] inflight-join", key)
                report = await asyncio.shield(running)
                return report.model_copy(deep=True)

            task = asyncio.get_running_loop().create_task(self._run(key, name, safe_observer))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
            report = await asyncio.shield(task)
            return report.model_copy(deep=True)
        finally:
            safe_observer.close()

    def _forget(self, key: str, task: "asyncio.Task[AnalysisReport]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Followers may all have gone away; retrieve the outcome so it is not reported as unhandled.
        if not task.cancelled():
            task.exception()

    def _check_configured(self) -> None:
        missing = []
        if not self.generation.configured:
            missing.append("generation provider (GEMINI_API_KEY)")
        if not self.search.configured:
            missing.append("search provider (TAVILY_API_KEY)")
        if missing:
            raise ConfigurationError("Missing configuration: " + ", ".join(missing))

    # ========================================================================
    # RUN
    # ========================================================================

    async def _run(self, ticker: str, company_name: str, observer: SafeObserver) -> AnalysisReport:
        ctx = _RunContext(
            ticker=ticker,
            company_name=company_name,
            run_id=f"{ticker}-{int(time.time() * 1000)}",
            observer=observer,
        )
        t0 = time.perf_counter()
        logger.info("%srun-start company=%s", ctx.log_prefix, company_name)
        try:
            final_state = await self._graph.ainvoke({"ctx": ctx})
        except PipelineError as err:
            self._record_failure(ctx, err.stage, err)
            raise
        except Exception as exc:
            stage = ctx.stage.value if ctx.stage else "START"
            err = PipelineError(stage, "pipeline", exc)
            self._record_failure(ctx, stage, err)
            raise err from exc

        report: AnalysisReport = final_state["report"]
        self.cache.set(ticker, report)
        ANALYSIS_SUCCESS.inc()
        logger.info(
            "%srun-complete seconds=%.2f sources=%d signal=%s",
            ctx.log_prefix,
            time.perf_counter() - t0,
            len(report.sources),
            report.technical_analysis.signal,
        )
        return report

    def _record_failure(self, ctx: _RunContext, stage: str, err: PipelineError) -> None:
        ANALYSIS_FAILURES.labels(stage=stage).inc()
        failed = Stage(stage) if stage in Stage.__members__ else ctx.stage
        if failed is not None:
            ctx.observer.stage_failed(failed, err)
        logger.error("%srun-failed stage=%s task=%s error=%s", ctx.log_prefix, stage, err.task_name, err.cause)

    def _build_graph(self):
        workflow = StateGraph(PipelineState)

        workflow.add_node("harvest_market", self._harvest_market_node)
        workflow.add_node("harvest_social", self._harvest_social_node)
        workflow.add_node("analyze", self._analyze_node)
        workflow.add_node("synthesize", self._synthesize_node)
        workflow.add_node("assemble", self._assemble_node)

        workflow.set_entry_point("harvest_market")
        workflow.add_edge("harvest_market", "harvest_social")
        workflow.add_edge("harvest_social", "analyze")
        workflow.add_edge("analyze", "synthesize")
        workflow.add_edge("synthesize", "assemble")
        workflow.add_edge("assemble", END)

        return workflow.compile()

    # ========================================================================
    # NODES
    # ========================================================================

    async def _search(
        self,
        ctx: _RunContext,
        provider: SearchProvider,
        query: str,
        *,
        domains: Optional[Sequence[str]] = None,
        recency_days: Optional[int] = None,
    ) -> List[SearchHit]:
        try:
            return list(await provider.search(query, domains=domains, recency_days=recency_days))
        except Exception as exc:
            logger.warning("%sharvest-failed query=%r error=%s", ctx.log_prefix, query, exc)
            return []

    async def _harvest_market_node(self, state: PipelineState) -> Dict[str, Any]:
        ctx = state["ctx"]
        ctx.enter(Stage.HARVEST_MARKET)
        with STAGE_DURATION.labels(stage=Stage.HARVEST_MARKET.value).time():
            hits = await self._search(
                ctx,
                self.search,
                f"{ctx.ticker} {ctx.company_name} stock price earnings news analysis",
                recency_days=self.options.market_recency_days,
            )
        logger.info("%sharvest-market hits=%d", ctx.log_prefix, len(hits))
        return {"market_hits": hits}

    async def _harvest_social_node(self, state: PipelineState) -> Dict[str, Any]:
        ctx = state["ctx"]
        opts = self.options
        provider = self.social_search if self.social_search is not None and self.social_search.configured else self.search
        query = f"{ctx.ticker} {ctx.company_name} stock sentiment discussion"

        ctx.enter(Stage.HARVEST_SOCIAL)
        with STAGE_DURATION.labels(stage=Stage.HARVEST_SOCIAL.value).time():
            hits = await self._search(
                ctx, provider, query, domains=opts.social_domains, recency_days=opts.social_recency_days
            )
            if not hits:
                logger.info(
                    "%ssocial-search-fallback days=%d fallback_days=%d",
                    ctx.log_prefix,
                    opts.social_recency_days,
                    opts.social_fallback_recency_days,
                )
                ctx.enter(Stage.HARVEST_SOCIAL)
                hits = await self._search(
                    ctx, provider, query, domains=opts.social_domains, recency_days=opts.social_fallback_recency_days
                )
        logger.info("%sharvest-social hits=%d", ctx.log_prefix, len(hits))
        return {"social_hits": hits}

    async def _generate(self, ctx: _RunContext, task_name: str, template: str, variables: Dict[str, Any]) -> str:
        async def work(provider_id: str) -> str:
            return await self.generation.generate(provider_id, template, variables)

        return await self.executor.execute(task_name, work, log_context=ctx.log_prefix)

    async def _analyze_node(self, state: PipelineState) -> Dict[str, Any]:
        ctx = state["ctx"]
        base = {"ticker": ctx.ticker, "company_name": ctx.company_name}

        # Both agents start together: one emission point for the pair.
        ctx.enter(Stage.ANALYZE_SOCIAL)
        ctx.enter(Stage.ANALYZE_TECHNICAL)
        t0 = time.perf_counter()
        social_raw, technical_raw = await asyncio.gather(
            self._generate(
                ctx,
                TASK_SOCIAL,
                prompts.SOCIAL_AGENT_TEMPLATE,
                {**base, "social_context": format_hits_for_prompt(state.get("social_hits") or [])},
            ),
            self._generate(
                ctx,
                TASK_TECHNICAL,
                prompts.TECHNICAL_AGENT_TEMPLATE,
                {**base, "market_context": format_hits_for_prompt(state.get("market_hits") or [])},
            ),
            return_exceptions=True,
        )
        elapsed = time.perf_counter() - t0
        STAGE_DURATION.labels(stage=Stage.ANALYZE_SOCIAL.value).observe(elapsed)
        STAGE_DURATION.labels(stage=Stage.ANALYZE_TECHNICAL.value).observe(elapsed)

        for stage, task_name, outcome in (
            (Stage.ANALYZE_SOCIAL, TASK_SOCIAL, social_raw),
            (Stage.ANALYZE_TECHNICAL, TASK_TECHNICAL, technical_raw),
        ):
            if isinstance(outcome, BaseException):
                ctx.stage = stage
                raise PipelineError(stage.value, task_name, outcome) from outcome

        return {
            "social": parse_social(social_raw, log_context=ctx.log_prefix),
            "technical": parse_technical(technical_raw, log_context=ctx.log_prefix),
        }

    async def _synthesize_node(self, state: PipelineState) -> Dict[str, Any]:
        ctx = state["ctx"]
        ctx.enter(Stage.SYNTHESIZE)
        with STAGE_DURATION.labels(stage=Stage.SYNTHESIZE.value).time():
            try:
                memo = await self._generate(
                    ctx,
                    TASK_NARRATOR,
                    prompts.NARRATOR_TEMPLATE,
                    narrator_variables(state["social"], state["technical"]),
                )
            except Exception as exc:
                raise PipelineError(Stage.SYNTHESIZE.value, TASK_NARRATOR, exc) from exc
        return {"memo": memo}

    async def _assemble_node(self, state: PipelineState) -> Dict[str, Any]:
        ctx = state["ctx"]
        sources = collect_sources(
            state.get("market_hits") or [],
            state.get("social_hits") or [],
            limit=self.options.max_sources,
        )
        report = build_report(
            ticker=ctx.ticker,
            company_name=ctx.company_name,
            social=state["social"],
            technical=state["technical"],
            memo=state["memo"],
            sources=sources,
        )
        return {"report": report}

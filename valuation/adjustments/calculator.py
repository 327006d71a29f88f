"""
Adjustment Calculator

Runs the regression, cost and paired-sales engines for every attribute and
blends their estimates into an immutable AdjustmentRunResult.

Engines are independent of each other. With an executor they are submitted
together and the blend for an attribute waits for all three futures.
"""

import logging
import uuid
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from valuation.comp_engine.models import CompProperty
from valuation.comp_engine.validation import ensure_valid
from valuation.errors import NotFound

from .blender import blend, validate_engine_settings
from .engines import CostEngine, PairedSalesEngine, RegressionEngine
from .models import (
    ATTR_METADATA,
    AdjustmentRunInput,
    AdjustmentRunResult,
    AttrAdjustment,
    AttrKey,
    ChosenValue,
    CostBaseline,
    Engine,
    EngineSettings,
    ProvenanceRef,
)


logger = logging.getLogger(__name__)


class AdjustmentCalculator:
    """Produces adjustment runs from a comp set and a cost baseline."""

    def __init__(
        self,
        regression: Optional[RegressionEngine] = None,
        cost: Optional[CostEngine] = None,
        paired: Optional[PairedSalesEngine] = None,
    ):
        self.regression = regression or RegressionEngine()
        self.cost = cost or CostEngine()
        self.paired = paired or PairedSalesEngine()

    def compute(
        self,
        run_input: AdjustmentRunInput,
        comps: List[CompProperty],
        prices: Dict[str, float],
        baseline: CostBaseline,
        settings: Optional[EngineSettings] = None,
        executor: Optional[Executor] = None,
        attributes: Optional[Iterable[AttrKey]] = None,
        now: Optional[datetime] = None,
    ) -> AdjustmentRunResult:
        """
        Compute a new adjustment run.

        Args:
            run_input: Order, comp ids, subject and market basis
            comps: Comp records; only ids listed in run_input are used
            prices: Time-adjusted price per comp id
            baseline: Cost baseline table
            settings: Engine weights, display precision and cap (default settings)
            executor: Optional executor for running engines concurrently
            attributes: Attributes to compute (default: all)
            now: Run timestamp (default: current UTC time)

        Returns:
            AdjustmentRunResult with a fresh run_id

        Raises:
            ValidationError: If engine settings are invalid
            NotFound: If a comp id in run_input has no record
        """
        settings = settings or EngineSettings.default()
        ensure_valid(validate_engine_settings(settings), "engine settings")

        by_id = {comp.id: comp for comp in comps}
        missing = [comp_id for comp_id in run_input.comp_ids if comp_id not in by_id]
        if missing:
            raise NotFound("comp", missing[0])
        run_comps = [by_id[comp_id] for comp_id in run_input.comp_ids]

        keys = list(attributes) if attributes is not None else list(AttrKey)
        estimates = self._run_engines(keys, run_input, run_comps, prices, baseline, executor)

        attrs = []
        warnings = []
        for key in keys:
            regression, cost, paired = estimates[key]
            outcome = blend(settings.weights, regression, cost, paired)
            metadata = ATTR_METADATA[key]
            if outcome.warning:
                warnings.append(f"{key.value}: {outcome.warning}")
                logger.warning("Attribute %s: %s", key.value, outcome.warning)
            attrs.append(AttrAdjustment(
                key=key,
                chosen=ChosenValue(value=outcome.value, source=outcome.source),
                unit=metadata.unit,
                direction=metadata.direction,
                blended_value=outcome.value,
                regression=regression,
                cost=cost,
                paired=paired,
                provenance=self._provenance(regression, cost, paired, run_input),
                warnings=[outcome.warning] if outcome.warning else [],
            ))

        run = AdjustmentRunResult(
            run_id=uuid.uuid4().hex,
            computed_at=now or datetime.now(timezone.utc),
            attrs=attrs,
            settings=settings,
            input=run_input,
            warnings=warnings,
        )
        logger.info(
            "Adjustment run %s for order %s: %d comps, %d attributes, %d warnings",
            run.run_id,
            run_input.order_id,
            len(run_comps),
            len(attrs),
            len(warnings),
        )
        return run

    def _run_engines(self, keys, run_input, comps, prices, baseline, executor):
        subject = run_input.subject
        calls = {}
        for key in keys:
            calls[key] = (
                (self.regression.estimate, (key, subject, comps, prices, run_input.market_basis)),
                (self.cost.estimate, (key, subject, baseline)),
                (self.paired.estimate, (key, comps, prices)),
            )

        if executor is None:
            return {
                key: tuple(fn(*args) for fn, args in engine_calls)
                for key, engine_calls in calls.items()
            }

        futures = {
            key: [executor.submit(fn, *args) for fn, args in engine_calls]
            for key, engine_calls in calls.items()
        }
        return {
            key: tuple(future.result() for future in key_futures)
            for key, key_futures in futures.items()
        }

    @staticmethod
    def _provenance(regression, cost, paired, run_input) -> List[ProvenanceRef]:
        refs = []
        if regression is not None:
            refs.append(ProvenanceRef(
                Engine.REGRESSION,
                f"OLS on {run_input.market_basis.value} over {regression.n} comps",
            ))
        if cost is not None:
            refs.append(ProvenanceRef(Engine.COST, cost.basis_note))
        if paired is not None:
            refs.append(ProvenanceRef(Engine.PAIRED, f"{paired.n_pairs} matched pairs"))
        return refs

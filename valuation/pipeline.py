"""
Valuation Pipeline

Per-order orchestration of the comparable valuation stages:

    load -> weights -> rank -> select/lock/swap -> Hi-Lo bracket
         -> compute adjustments -> override -> apply

Every operation reads the order from the store, works on copies, and writes
the new state back only when it succeeds, all inside the order's lock. A
failed operation leaves the stored order exactly as it was.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from utils.config import Config
from valuation.adjustments import (
    AdjustmentCalculator,
    AdjustmentRunInput,
    AdjustmentRunResult,
    AdjustmentsBundle,
    AttrAdjustment,
    AttrKey,
    CostBaseline,
    EngineSettings,
    apply_adjustments,
    apply_override,
    clear_override,
    validate_engine_settings,
)
from valuation.comp_engine import (
    BracketSelector,
    CompProperty,
    CompScorer,
    CompSelection,
    CompType,
    ConstraintSet,
    HiLoResult,
    HiLoSettings,
    HiLoState,
    OrderWeights,
    SubjectProperty,
    TimeAdjustments,
    WeightSet,
    annotate_comps,
    annotate_geography,
    ensure_valid,
    restrict_to_polygon,
    time_adjusted_price,
    validate_hilo_settings,
    validate_weight_set,
)
from valuation.comp_engine import selection as selection_ops
from valuation.comp_engine.time_adjust import require_time_adjustments
from valuation.defaults import (
    DEFAULT_CONSTRAINTS,
    DEFAULT_COST_BASELINE,
    DEFAULT_HILO_SETTINGS,
    DEFAULT_WEIGHTS,
    WEIGHT_PROFILES,
)
from valuation.errors import NotFound, ValidationError
from valuation.market import derive_time_adjustment
from valuation.store import InMemoryOrderStore, OrderState, OrderStore


logger = logging.getLogger(__name__)

WeightsInput = Union[WeightSet, Mapping[str, Any]]
ConstraintsInput = Union[ConstraintSet, Mapping[str, Any]]


def _weight_set(weights: WeightsInput) -> WeightSet:
    return weights if isinstance(weights, WeightSet) else WeightSet.from_dict(dict(weights))


def _constraint_set(constraints: ConstraintsInput) -> ConstraintSet:
    if isinstance(constraints, ConstraintSet):
        return constraints
    return ConstraintSet.from_dict(dict(constraints))


class ValuationPipeline:
    """Entry point for all per-order valuation operations."""

    def __init__(
        self,
        store: Optional[OrderStore] = None,
        scorer: Optional[CompScorer] = None,
        bracket_selector: Optional[BracketSelector] = None,
        calculator: Optional[AdjustmentCalculator] = None,
        cost_baseline: Optional[CostBaseline] = None,
        executor: Optional[Executor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize pipeline.

        Args:
            store: Order storage (default: InMemoryOrderStore)
            scorer: Comp scorer
            bracket_selector: Hi-Lo selector
            calculator: Adjustment calculator
            cost_baseline: Default cost table for new orders
            executor: Optional executor for running adjustment engines
            clock: Returns the current time (default: UTC now)
        """
        self.store = store or InMemoryOrderStore()
        self.scorer = scorer or CompScorer()
        self.bracket_selector = bracket_selector or BracketSelector(self.scorer)
        self.calculator = calculator or AdjustmentCalculator()
        self.cost_baseline = cost_baseline or CostBaseline.from_dict(DEFAULT_COST_BASELINE)
        self.executor = executor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(
        cls, config: Optional[Config] = None, store: Optional[OrderStore] = None
    ) -> "ValuationPipeline":
        """Build a pipeline from application configuration."""
        config = config or Config.load()
        baseline = None
        if config.cost_baseline_path:
            baseline = CostBaseline.load(config.cost_baseline_path)
            logger.info("Loaded cost baseline from %s", config.cost_baseline_path)
        executor = None
        if config.engine_workers > 0:
            executor = ThreadPoolExecutor(
                max_workers=config.engine_workers, thread_name_prefix="adj-engine"
            )
        return cls(store=store, cost_baseline=baseline, executor=executor)

    # =========================================================================
    # Orders
    # =========================================================================

    def load_order(
        self,
        order_id: str,
        subject: SubjectProperty,
        comps: List[CompProperty],
        polygon: Optional[dict] = None,
        weights: Optional[WeightsInput] = None,
        constraints: Optional[ConstraintsInput] = None,
        selection: Optional[CompSelection] = None,
        time_adjustments: Optional[TimeAdjustments] = None,
        hilo_settings: Optional[HiLoSettings] = None,
        engine_settings: Optional[EngineSettings] = None,
        updated_by: str = "system",
    ) -> OrderState:
        """
        Create or replace an order with its subject and candidate pool.

        Distances and polygon membership are filled from coordinates when
        available.

        Raises:
            ValidationError: If the order id, comp ids or any settings are invalid
        """
        errors = []
        if not order_id:
            errors.append("orderId is required")
        ids = [comp.id for comp in comps]
        duplicates = sorted({comp_id for comp_id in ids if ids.count(comp_id) > 1})
        if duplicates:
            errors.append(f"Duplicate comp ids: {', '.join(duplicates)}")
        ensure_valid(errors, "order")

        weights = weights if weights is not None else DEFAULT_WEIGHTS
        constraints = constraints if constraints is not None else DEFAULT_CONSTRAINTS
        ensure_valid(validate_weight_set(weights, constraints), "weights")
        weight_set = _weight_set(weights)
        constraint_set = _constraint_set(constraints)

        hilo_settings = hilo_settings or DEFAULT_HILO_SETTINGS
        ensure_valid(validate_hilo_settings(hilo_settings), "bracket settings")

        engine_settings = engine_settings or EngineSettings.default()
        ensure_valid(validate_engine_settings(engine_settings), "engine settings")

        if selection is None:
            selection = CompSelection(order_id=order_id)
        elif selection.order_id != order_id:
            selection = replace(selection, order_id=order_id)

        now = self._clock()
        state = OrderState(
            order_id=order_id,
            subject=subject,
            comps=annotate_geography(comps, subject, polygon),
            polygon=polygon,
            weights=OrderWeights(
                order_id=order_id,
                weights=weight_set,
                constraints=constraint_set,
                updated_at=now,
                updated_by=updated_by,
            ),
            selection=selection,
            time_adjustments=time_adjustments,
            hilo=HiLoState(order_id=order_id, settings=hilo_settings, updated_at=now),
            engine_settings=engine_settings,
            cost_baseline=self.cost_baseline,
        )

        with self.store.with_lock(order_id):
            self.store.put(state)

        logger.info("Loaded order %s with %d comps", order_id, len(comps))
        return state

    def get_order(self, order_id: str) -> OrderState:
        return self.store.get(order_id)

    def set_time_adjustments(
        self, order_id: str, time_adjustments: TimeAdjustments
    ) -> TimeAdjustments:
        """Resolve the order's effective date and monthly rate."""
        require_time_adjustments(time_adjustments)
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            self.store.put(replace(state, time_adjustments=time_adjustments))
        return time_adjustments

    def derive_time_adjustments(
        self,
        order_id: str,
        records: List[Any],
        effective_date: Any,
        **options: Any,
    ) -> TimeAdjustments:
        """Fit the market trend from sale records and store it on the order."""
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            basis = state.time_adjustments.basis if state.time_adjustments else None
            if basis is not None:
                options.setdefault("basis", basis)
            time_adjustments = derive_time_adjustment(records, effective_date, **options)
            self.store.put(replace(state, time_adjustments=time_adjustments))
        return time_adjustments

    # =========================================================================
    # Weights & Ranking
    # =========================================================================

    def update_weights(
        self,
        order_id: str,
        weights: WeightsInput,
        constraints: ConstraintsInput,
        updated_by: str = "user",
        profile_id: Optional[str] = None,
    ) -> OrderWeights:
        """
        Replace the order's weights and constraints. All-or-nothing.

        Raises:
            ValidationError: If either set is invalid (nothing is stored)
            NotFound: If the order does not exist
        """
        ensure_valid(validate_weight_set(weights, constraints), "weights")
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            order_weights = OrderWeights(
                order_id=order_id,
                weights=_weight_set(weights),
                constraints=_constraint_set(constraints),
                updated_at=self._clock(),
                updated_by=updated_by,
                active_profile_id=profile_id,
            )
            self.store.put(replace(state, weights=order_weights))
        return order_weights

    def apply_profile(
        self, order_id: str, profile_id: str, updated_by: str = "user"
    ) -> OrderWeights:
        """Copy a shop profile's weights and constraints onto the order."""
        for profile in WEIGHT_PROFILES:
            if profile.id == profile_id:
                return self.update_weights(
                    order_id,
                    profile.weights,
                    profile.constraints,
                    updated_by=updated_by,
                    profile_id=profile.id,
                )
        raise NotFound("weight profile", profile_id)

    def rank_comps(self, order_id: str) -> List[CompProperty]:
        """
        Score and rank the order's pool with its active weights.

        Returns:
            Scored comp copies in rank order, flagged with lock/primary state
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            pool = restrict_to_polygon(state.comps, state.selection)
            ranked = self.scorer.score(
                pool,
                state.subject,
                state.weights.weights,
                state.weights.constraints,
            )
            return annotate_comps(ranked, state.selection)

    # =========================================================================
    # Selection
    # =========================================================================

    def lock(self, order_id: str, comp_id: str, locked: bool = True) -> CompSelection:
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            state.comp(comp_id)
            selection = selection_ops.lock(state.selection, comp_id, locked)
            if selection is not state.selection:
                self.store.put(replace(state, selection=selection))
            return selection

    def update_selection(
        self,
        order_id: str,
        restrict_to_polygon: Optional[bool] = None,
        primary: Optional[List[str]] = None,
        locked: Optional[List[str]] = None,
    ) -> CompSelection:
        """
        Merge a partial selection update.

        Raises:
            NotFound: If a referenced comp is not in the order
            ValidationError: If the merged selection is malformed
            LockedSlotConflict: If a locked primary would be dropped
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            for comp_id in list(primary or []) + list(locked or []):
                if comp_id:
                    state.comp(comp_id)
            selection = selection_ops.update_selection(
                state.selection,
                restrict_to_polygon=restrict_to_polygon,
                primary=primary,
                locked=locked,
            )
            self.store.put(replace(state, selection=selection))
            return selection

    def swap(
        self,
        order_id: str,
        candidate_id: str,
        target_index: int,
        confirm: bool = False,
    ) -> CompSelection:
        """
        Promote a candidate into a primary slot.

        Raises:
            LockedSlotConflict: If the slot is locked and confirm is False;
                the stored selection is unchanged
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            if candidate_id:
                state.comp(candidate_id)
            selection = selection_ops.swap(
                state.selection, candidate_id, target_index, confirm=confirm
            )
            if selection is not state.selection:
                self.store.put(replace(state, selection=selection))
                logger.info(
                    "Order %s: %s moved to primary slot #%d",
                    order_id,
                    candidate_id,
                    target_index + 1,
                )
            return selection

    # =========================================================================
    # Hi-Lo Bracket
    # =========================================================================

    def update_hilo_settings(self, order_id: str, settings: HiLoSettings) -> HiLoState:
        ensure_valid(validate_hilo_settings(settings), "bracket settings")
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            hilo = HiLoState(
                order_id=order_id,
                settings=settings,
                updated_at=self._clock(),
                result=state.hilo.result,
            )
            self.store.put(replace(state, hilo=hilo))
            return hilo

    def compute_hilo(
        self,
        order_id: str,
        settings: Optional[HiLoSettings] = None,
        apply_primaries: bool = True,
    ) -> HiLoResult:
        """
        Compute the bracket for an order.

        Args:
            order_id: Order to bracket
            settings: Settings for this run (default: the order's settings,
                which are replaced when given)
            apply_primaries: Write the chosen primaries into the selection

        Raises:
            PreconditionMissing: If time adjustments are not resolved
            NoCandidatesAvailable: If the filtered pool is empty
            ValidationError: If settings are invalid
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            settings = settings or state.hilo.settings
            now = self._clock()
            result = self.bracket_selector.compute(
                state.comps,
                state.subject,
                settings,
                state.time_adjustments,
                selection=state.selection,
                constraints=state.weights.constraints,
                now=now,
            )
            selection = state.selection
            if apply_primaries:
                selection = replace(
                    selection, primary=selection_ops.compact_primary(result.primaries)
                )
            self.store.put(
                replace(
                    state,
                    hilo=HiLoState(
                        order_id=order_id, settings=settings, updated_at=now, result=result
                    ),
                    selection=selection,
                )
            )
            return result

    # =========================================================================
    # Adjustments
    # =========================================================================

    def _adjustment_comp_ids(self, state: OrderState) -> List[str]:
        """Primaries plus bracket-selected sales, else every sale in the pool."""
        ids = list(state.selection.primary_ids)
        if state.hilo.result:
            ids.extend(state.hilo.result.selected_sales)
        ids = list(dict.fromkeys(ids))
        if ids:
            return ids
        return [comp.id for comp in state.comps if comp.comp_type == CompType.SALE]

    def compute_adjustments(
        self,
        order_id: str,
        comp_ids: Optional[List[str]] = None,
        settings: Optional[EngineSettings] = None,
        attributes: Optional[Iterable[AttrKey]] = None,
    ) -> AdjustmentRunResult:
        """
        Run the adjustment engines and store a new run.

        Manual overrides from earlier runs do not carry over.

        Raises:
            PreconditionMissing: If time adjustments are not resolved
            NotFound: If a comp id is not in the order
            ValidationError: If engine settings are invalid or no comps remain
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            time_adjustments = require_time_adjustments(state.time_adjustments)
            settings = settings or state.engine_settings

            ids = list(dict.fromkeys(comp_ids)) if comp_ids else self._adjustment_comp_ids(state)
            if not ids:
                raise ValidationError(["No comps to adjust"], concern="adjustments")
            comps = [state.comp(comp_id) for comp_id in ids]
            prices = {comp.id: time_adjusted_price(comp, time_adjustments) for comp in comps}

            run = self.calculator.compute(
                AdjustmentRunInput(
                    order_id=order_id,
                    comp_ids=tuple(ids),
                    subject=state.subject,
                    market_basis=time_adjustments.basis,
                ),
                comps,
                prices,
                state.cost_baseline,
                settings=settings,
                executor=self.executor,
                attributes=attributes,
                now=self._clock(),
            )
            self.store.put(
                replace(state, engine_settings=settings).with_run(run, latest=True)
            )
            return run

    def override_adjustment(
        self,
        order_id: str,
        key: Any,
        value: float,
        note: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> AttrAdjustment:
        """
        Set a manual chosen value on one attribute of a run.

        The stored run is replaced by a copy with the same run_id; an applied
        bundle keeps the run it was built from.
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            run = state.run(run_id)
            attr = apply_override(run.attr(key), value, note)
            self.store.put(state.with_run(run.with_attr(attr)))
            logger.info(
                "Order %s run %s: %s overridden to %s", order_id, run.run_id, attr.key.value, value
            )
            return attr

    def clear_override(
        self, order_id: str, key: Any, run_id: Optional[str] = None
    ) -> AttrAdjustment:
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            run = state.run(run_id)
            attr = clear_override(run.attr(key))
            self.store.put(state.with_run(run.with_attr(attr)))
            return attr

    def apply_adjustments(
        self,
        order_id: str,
        run_id: Optional[str] = None,
        override_notes: Optional[str] = None,
    ) -> AdjustmentsBundle:
        """
        Apply a run to its comps and store the bundle.

        Raises:
            PreconditionMissing: If time adjustments are not resolved
            NotFound: If the run does not exist
        """
        with self.store.with_lock(order_id):
            state = self.store.get(order_id)
            bundle = apply_adjustments(
                state.run(run_id),
                state.comps,
                state.time_adjustments,
                selection=state.selection,
                override_notes=override_notes,
                now=self._clock(),
            )
            applied = replace(state, bundle=bundle)
            self.store.put(applied.with_run(applied.run(run_id)))
            return bundle

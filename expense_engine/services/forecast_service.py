"""Forecast boundary.

Formats bill history into a request for an external time-series forecaster
and stores its typed response as a Prediction. No forecasting happens here.
Amounts cross the boundary as floats in one direction only and come back
as Decimal via ``from_float``.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_engine.config import EngineSettings, get_settings
from expense_engine.errors import InsufficientDataError, ValidationError
from expense_engine.models.bill import Bill, BillStatus, BillType
from expense_engine.models.prediction import Prediction, PredictionTarget
from expense_engine.money import ZERO, from_float, to_float, to_units
from expense_engine.schemas.forecast import ForecastRequest, ForecastResponse
from expense_engine.services.audit_service import AuditService

logger = logging.getLogger(__name__)

HISTORY_STATUSES = (BillStatus.POSTED, BillStatus.CLOSED)

TARGET_BILL_TYPES = {
    PredictionTarget.ELECTRICITY: BillType.ELECTRICITY,
    PredictionTarget.GAS: BillType.GAS,
    PredictionTarget.SHARED_BUDGET: BillType.SHARED,
}


class ForecastClient(ABC):
    """Abstract base class for forecasting endpoints."""

    @abstractmethod
    def forecast(self, request: ForecastRequest) -> ForecastResponse:
        """Forecast the series described by ``request``.

        Args:
            request: Historical series and forecast parameters

        Returns:
            ForecastResponse: Typed forecaster output
        """
        pass


class StaticForecastClient(ForecastClient):
    """In-memory forecast client for testing.

    Records every request and answers with a response built by ``responder``
    (or, by default, by repeating the last historical value).
    """

    def __init__(self, responder: Optional[Callable[[ForecastRequest], ForecastResponse]] = None):
        """Initialize with empty request log."""
        self.requests: list[ForecastRequest] = []
        self.responder = responder or self.repeat_last_value

    def forecast(self, request: ForecastRequest) -> ForecastResponse:
        self.requests.append(request)
        logger.debug("[STATIC] Forecast requested for %s", request.target.value)
        return self.responder(request)

    @staticmethod
    def repeat_last_value(request: ForecastRequest) -> ForecastResponse:
        """Naive forecast: every future month equals the last observed one."""
        last_date = request.historical_dates[-1]
        last_value = request.historical_values[-1]
        dates = []
        for step in range(1, request.horizon_months + 1):
            month_index = last_date.month - 1 + step
            dates.append(
                last_date.replace(year=last_date.year + month_index // 12, month=month_index % 12 + 1, day=1)
            )
        values = [last_value] * len(dates)
        costs = [v * request.cost_per_unit for v in values] if request.cost_per_unit is not None else []
        return ForecastResponse(
            target=request.target,
            model={"name": "naive", "version": "1.0"},
            predicted_dates=dates,
            predicted_values=values,
            confidence_interval={"lower": values, "upper": values},
            predicted_costs=costs,
            created_at=datetime.now(timezone.utc),
        )


class ForecastService:
    """Service preparing forecast requests and storing predictions."""

    def __init__(
        self,
        db: Session,
        client: ForecastClient,
        settings: Optional[EngineSettings] = None,
    ):
        """Initialize with database session and forecast client."""
        self.db = db
        self.client = client
        self.settings = settings or get_settings()

    def history(self, target: PredictionTarget) -> list[Bill]:
        """Posted and closed bills feeding a target, oldest period first."""
        target = PredictionTarget(target)
        stmt = (
            select(Bill)
            .where(
                Bill.bill_type == TARGET_BILL_TYPES[target],
                Bill.status.in_(HISTORY_STATUSES),
            )
            .order_by(Bill.period_start.asc(), Bill.id.asc())
        )
        return list(self.db.scalars(stmt).all())

    def build_request(
        self,
        target: PredictionTarget,
        horizon_months: int | None = None,
    ) -> ForecastRequest:
        """Format the bill history of a target for the forecaster.

        Utilities forecast consumed units and pass the average historical cost
        per unit; the shared budget forecasts total amounts.

        Raises:
            ValidationError: If the target or horizon is invalid
            InsufficientDataError: If fewer bills than the configured minimum
                are available
        """
        try:
            target = PredictionTarget(target)
        except ValueError as e:
            raise ValidationError(
                "invalid target, must be electricity, gas, or shared_budget", target=target
            ) from e

        horizon = horizon_months or self.settings.forecast_default_horizon_months
        if horizon < 1:
            raise ValidationError("horizon_months must be positive", horizon_months=horizon)

        bills = self.history(target)
        if len(bills) < self.settings.forecast_min_history:
            raise InsufficientDataError(
                f"insufficient historical data for forecasting "
                f"(need at least {self.settings.forecast_min_history} data points, have {len(bills)})",
                target=target.value,
                points=len(bills),
            )

        dates = [datetime.combine(b.period_start, time.min, tzinfo=timezone.utc) for b in bills]
        cost_per_unit = None
        if target == PredictionTarget.SHARED_BUDGET:
            values = [to_float(b.total_amount) for b in bills]
        else:
            units = [b.total_units if b.total_units is not None else ZERO for b in bills]
            values = [to_float(u) for u in units]
            total_units = sum(units, Decimal(0))
            total_amount = sum((b.total_amount for b in bills), Decimal(0))
            cost_per_unit = to_float(total_amount / total_units) if total_units > 0 else 0.0

        return ForecastRequest(
            target=target,
            historical_dates=dates,
            historical_values=values,
            horizon_months=horizon,
            confidence_level=to_float(self.settings.forecast_confidence_level),
            cost_per_unit=cost_per_unit,
        )

    def recompute_prediction(
        self,
        target: PredictionTarget,
        horizon_months: int | None = None,
        actor_id: int | None = None,
    ) -> Prediction:
        """Request a forecast for a target and store the result.

        Raises:
            ValidationError: If the target is invalid or the response does not
                match the request
            InsufficientDataError: If there is not enough history
        """
        request = self.build_request(target, horizon_months)
        logger.info(
            "Requesting %d-month forecast for %s from %d points",
            request.horizon_months,
            request.target.value,
            len(request.historical_values),
        )
        response = self.client.forecast(request)
        if response.target != request.target:
            raise ValidationError(
                f"forecaster answered for {response.target.value}, expected {request.target.value}",
                target=request.target.value,
            )

        prediction = Prediction(
            target=request.target,
            period_start=self._as_date(response.predicted_dates[0]),
            period_end=self._as_date(response.predicted_dates[-1]),
            horizon_months=request.horizon_months,
            predicted_units=to_units(repr(sum(response.predicted_values, 0.0)), field="predicted_units"),
            predicted_amount=from_float(sum(response.predicted_costs, 0.0)),
            model_name=response.model.name,
            model_version=response.model.version,
            created_from="bills",
        )
        self.db.add(prediction)
        self.db.flush()
        AuditService.log(
            self.db,
            "prediction",
            prediction.id,
            "recompute",
            actor_id,
            {"target": request.target.value, "model": f"{response.model.name}/{response.model.version}"},
        )
        self.db.commit()

        logger.info(
            "Stored prediction %d for %s: %s..%s, amount=%s",
            prediction.id,
            prediction.target.value,
            prediction.period_start,
            prediction.period_end,
            prediction.predicted_amount,
        )
        return prediction

    def list_predictions(self, target: PredictionTarget | None = None) -> list[Prediction]:
        """Stored predictions, newest first."""
        stmt = select(Prediction).order_by(Prediction.created_at.desc(), Prediction.id.desc())
        if target is not None:
            stmt = stmt.where(Prediction.target == PredictionTarget(target))
        return list(self.db.scalars(stmt).all())

    @staticmethod
    def _as_date(value: datetime) -> date:
        return value.date()


__all__ = ["ForecastClient", "StaticForecastClient", "ForecastService", "TARGET_BILL_TYPES"]

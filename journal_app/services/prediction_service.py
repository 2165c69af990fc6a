"""
Prediction Service

CRUD and accuracy analytics for market direction predictions.
"""

import logging
import math
from typing import Dict, Optional

import pandas as pd

from ..errors import NotFoundError, ValidationError
from ..forms import PredictionForm, PredictionUpdateForm, validate_payload
from ..models import db, Prediction, PREDICTION_STATUSES, PREDICTION_DIRECTIONS
from .trade_service import parse_date_param

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('status', 'result', 'confidence', 'strategy_notes', 'failure_reason', 'notes')


def _success_rate(statuses: pd.Series) -> Optional[float]:
    """PASSED share of completed predictions; None when nothing has completed"""
    passed = int((statuses == 'PASSED').sum())
    failed = int((statuses == 'FAILED').sum())
    if passed + failed == 0:
        return None
    return round(passed / (passed + failed) * 100, 2)


class PredictionService:
    """Service for prediction tracking"""

    def list_predictions(self, args, per_page: int = 50, max_page_size: int = 200) -> Dict:
        page = max(args.get('page', 1, type=int) or 1, 1)
        limit = min(max(args.get('limit', per_page, type=int) or per_page, 1), max_page_size)

        query = Prediction.query
        status = (args.get('status') or '').upper()
        if status:
            if status not in PREDICTION_STATUSES:
                raise ValidationError({'status': [f'Status must be one of {", ".join(PREDICTION_STATUSES)}']})
            query = query.filter(Prediction.status == status)

        direction = (args.get('direction') or '').upper()
        if direction:
            if direction not in PREDICTION_DIRECTIONS:
                raise ValidationError({'direction': [
                    f'Direction must be one of {", ".join(PREDICTION_DIRECTIONS)}']})
            query = query.filter(Prediction.direction == direction)

        strategy = args.get('strategy')
        if strategy:
            query = query.filter(Prediction.strategy.ilike(f'%{strategy}%'))

        total = query.count()
        predictions = query.order_by(Prediction.prediction_date.desc(), Prediction.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            'predictions': [prediction.to_dict() for prediction in predictions],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0,
            },
        }

    def get_prediction(self, prediction_id: int) -> Prediction:
        prediction = db.session.get(Prediction, prediction_id)
        if prediction is None:
            raise NotFoundError(f'Prediction {prediction_id} not found')
        return prediction

    def create_prediction(self, payload: Dict) -> Prediction:
        form = validate_payload(PredictionForm, payload)
        prediction = Prediction(
            prediction_date=form.prediction_date.data,
            strategy=form.strategy.data,
            direction=form.direction.data,
            confidence=form.confidence.data,
            status='PENDING',
            strategy_notes=form.strategy_notes.data or None,
            notes=form.notes.data or None,
        )
        try:
            db.session.add(prediction)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Created prediction {prediction.id}: {prediction.strategy} {prediction.direction}")
        return prediction

    def update_prediction(self, prediction_id: int, payload: Dict) -> Prediction:
        prediction = self.get_prediction(prediction_id)
        form = validate_payload(PredictionUpdateForm, payload)

        try:
            for name in UPDATABLE_FIELDS:
                if name in form.submitted_keys:
                    value = getattr(form, name).data
                    if value == '':
                        value = None
                    if name in ('status', 'confidence') and value is None:
                        raise ValidationError({name: ['Field cannot be cleared']})
                    setattr(prediction, name, value)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Updated prediction {prediction.id}: status {prediction.status}")
        return prediction

    def delete_prediction(self, prediction_id: int):
        prediction = self.get_prediction(prediction_id)
        try:
            db.session.delete(prediction)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(f"Deleted prediction {prediction_id}")

    def get_analytics(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> Dict:
        """Counts, success rate over completed predictions, per-strategy and per-confidence accuracy"""
        query = Prediction.query
        start = parse_date_param(date_from, 'date_from')
        end = parse_date_param(date_to, 'date_to', end_of_day=True)
        if start:
            query = query.filter(Prediction.prediction_date >= start)
        if end:
            query = query.filter(Prediction.prediction_date < end)

        predictions = query.order_by(Prediction.prediction_date.desc(), Prediction.id.desc()).all()
        df = pd.DataFrame([{
            'strategy': p.strategy,
            'confidence': p.confidence,
            'status': p.status,
            'month': p.prediction_date.strftime('%Y-%m'),
        } for p in predictions], columns=['strategy', 'confidence', 'status', 'month'])

        total = len(df)
        overall_rate = _success_rate(df['status'])

        strategy_performance = []
        for strategy, group in df.groupby('strategy'):
            strategy_performance.append({
                'strategy': strategy,
                'total_predictions': int(len(group)),
                'passed_count': int((group['status'] == 'PASSED').sum()),
                'failed_count': int((group['status'] == 'FAILED').sum()),
                'success_rate': _success_rate(group['status']),
                'average_confidence': round(float(group['confidence'].mean()), 2),
            })

        confidence_accuracy = [{
            'confidence_level': int(level),
            'total_predictions': int(len(group)),
            'success_rate': _success_rate(group['status']),
        } for level, group in df.groupby('confidence')]

        monthly_trends = [{
            'month': month,
            'total_predictions': int(len(group)),
            'success_rate': _success_rate(group['status']),
            'average_confidence': round(float(group['confidence'].mean()), 2),
        } for month, group in df.groupby('month')][-12:]

        return {
            'total_predictions': total,
            'pending_predictions': int((df['status'] == 'PENDING').sum()),
            'passed_predictions': int((df['status'] == 'PASSED').sum()),
            'failed_predictions': int((df['status'] == 'FAILED').sum()),
            'success_rate': overall_rate if overall_rate is not None else 0.0,
            'average_confidence': round(float(df['confidence'].mean()), 2) if total else 0.0,
            'strategy_performance': strategy_performance,
            'confidence_accuracy': confidence_accuracy,
            'monthly_trends': monthly_trends,
            'recent_predictions': [p.to_dict() for p in predictions[:10]],
        }

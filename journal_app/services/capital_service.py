"""
Capital Ledger Service

Every change to a pool balance goes through CapitalLedger, which writes an
append-only CapitalTransaction row carrying balance_after and updates the
pool counters in the same unit of work. Pools are read with a row lock and
carry an optimistic version column; a StaleDataError at commit rolls the unit
of work back and re-runs it.
"""

import logging
import uuid
from typing import Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (InsufficientBalanceError, LedgerConflictError, NotFoundError,
                      ValidationError)
from ..models import db, CapitalPool, CapitalTransaction

logger = logging.getLogger(__name__)

# Direction each transaction type moves the pool balance
BALANCE_SIGN = {
    'DEPOSIT': 1,
    'WITHDRAWAL': -1,
    'PROFIT': 1,
    'LOSS': -1,
    'TRANSFER_IN': 1,
    'TRANSFER_OUT': -1,
    'INVESTMENT': -1,
    'RETURN': 1,
}

# Running counter (and direction) each transaction type updates
COUNTER_EFFECTS = {
    'WITHDRAWAL': ('total_withdrawn', 1),
    'PROFIT': ('total_pnl', 1),
    'LOSS': ('total_pnl', -1),
    'INVESTMENT': ('total_invested', 1),
    'RETURN': ('total_invested', -1),
}

POOL_NAMES = {
    'TOTAL': 'Total Capital',
    'EQUITY': 'Equity Capital',
    'FNO': 'F&O Capital',
}

TRADE_REFERENCE = 'TRADE'
TRANSFER_REFERENCE = 'TRANSFER'


def transaction_effect(transaction_type: str, reversed_type: Optional[str] = None):
    """(balance sign, counter effect) of a transaction, REVERSAL included"""
    if transaction_type == 'REVERSAL':
        sign = -BALANCE_SIGN[reversed_type]
        counter = COUNTER_EFFECTS.get(reversed_type)
        if counter:
            counter = (counter[0], -counter[1])
        return sign, counter
    return BALANCE_SIGN[transaction_type], COUNTER_EFFECTS.get(transaction_type)


class CapitalLedger:
    """Atomic balance updates for capital pools"""

    def __init__(self, max_retries: Optional[int] = None):
        self._max_retries = max_retries

    @property
    def max_retries(self) -> int:
        if self._max_retries is not None:
            return self._max_retries
        return current_app.config.get('LEDGER_MAX_RETRIES', 3)

    # ---------- unit of work ----------

    def atomic(self, work: Callable):
        """
        Run work() and commit it as one unit.

        A concurrent update of a touched pool (StaleDataError) rolls back and
        re-runs work from scratch; any other error rolls back and propagates.
        """
        attempts = self.max_retries
        for attempt in range(1, attempts + 1):
            try:
                result = work()
                db.session.commit()
                return result
            except StaleDataError:
                db.session.rollback()
                logger.warning(f"Capital pool modified concurrently, retrying ({attempt}/{attempts})")
            except Exception:
                db.session.rollback()
                raise

        raise LedgerConflictError(getattr(work, 'pool_id', None), attempts)

    def lock_pool(self, pool_id: int) -> CapitalPool:
        """Read a pool FOR UPDATE, refreshed from the database"""
        pool = CapitalPool.query.with_for_update().populate_existing().filter_by(id=pool_id).first()
        if pool is None:
            raise NotFoundError(f'Capital pool {pool_id} not found')
        if not pool.is_active:
            raise ValidationError({'pool_id': [f'Capital pool {pool.name} is inactive']})
        return pool

    def _post(self, pool: CapitalPool, transaction_type: str, amount: float,
              description: Optional[str] = None, reference_id: Optional[str] = None,
              reference_type: Optional[str] = None, allow_overdraft: bool = False,
              reversal_of: Optional[CapitalTransaction] = None) -> CapitalTransaction:
        """Apply one transaction to an already locked pool and flush it"""
        amount = round(float(amount), 2)
        if amount <= 0:
            raise ValidationError({'amount': ['Amount must be positive']})

        reversed_type = reversal_of.transaction_type if reversal_of is not None else None
        sign, counter = transaction_effect(transaction_type, reversed_type)

        new_balance = round(pool.current_amount + sign * amount, 2)
        if sign < 0 and new_balance < 0 and not allow_overdraft:
            raise InsufficientBalanceError(pool.name, amount, pool.current_amount)

        if counter:
            attribute, step = counter
            setattr(pool, attribute, round(getattr(pool, attribute) + step * amount, 2))
        pool.current_amount = new_balance

        transaction = CapitalTransaction(
            pool_id=pool.id,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            balance_after=new_balance,
            reversal_of=reversal_of,
        )
        db.session.add(transaction)
        db.session.flush()

        logger.debug(f"{pool.name}: {transaction_type} {amount:.2f} -> balance {new_balance:.2f}")
        return transaction

    # ---------- standalone transactions ----------

    def apply_transaction(self, pool_id: int, transaction_type: str, amount: float,
                          description: Optional[str] = None, reference_id: Optional[str] = None,
                          reference_type: Optional[str] = None, allow_overdraft: bool = False,
                          commit: bool = True) -> CapitalTransaction:
        """Apply a single transaction; with commit=False the caller owns the unit of work"""
        if transaction_type not in BALANCE_SIGN:
            raise ValidationError({'transaction_type': [f'Unsupported transaction type: {transaction_type}']})

        def work():
            pool = self.lock_pool(pool_id)
            return self._post(pool, transaction_type, amount, description,
                              reference_id, reference_type, allow_overdraft)
        work.pool_id = pool_id

        if not commit:
            return work()

        transaction = self.atomic(work)
        logger.info(f"Recorded {transaction_type} of {transaction.amount:.2f} on pool {pool_id}")
        return transaction

    def transfer(self, from_pool_id: int, to_pool_id: int, amount: float,
                 description: Optional[str] = None) -> Dict:
        """Move funds between pools as a TRANSFER_OUT / TRANSFER_IN pair"""
        if from_pool_id == to_pool_id:
            raise ValidationError({'to_pool_id': ['Cannot transfer to the same pool']})

        def work():
            # Lock in id order so two opposite transfers cannot deadlock
            first, second = sorted((from_pool_id, to_pool_id))
            pools = {first: self.lock_pool(first), second: self.lock_pool(second)}
            source, target = pools[from_pool_id], pools[to_pool_id]
            # Shared by both legs so a reversal can find its pair
            reference = f'TRF-{uuid.uuid4().hex[:12]}'

            outgoing = self._post(source, 'TRANSFER_OUT', amount,
                                  description or f'Transfer to {target.name}',
                                  reference, TRANSFER_REFERENCE)
            incoming = self._post(target, 'TRANSFER_IN', amount,
                                  description or f'Transfer from {source.name}',
                                  reference, TRANSFER_REFERENCE)
            return {'transfer_out': outgoing.to_dict(), 'transfer_in': incoming.to_dict()}
        work.pool_id = from_pool_id

        result = self.atomic(work)
        logger.info(f"Transferred {amount:.2f} from pool {from_pool_id} to pool {to_pool_id}")
        return result

    def reverse_transaction(self, transaction_id: int) -> CapitalTransaction:
        """
        Compensate a transaction with a REVERSAL row; the original stays in the ledger.

        Reversing either leg of a transfer reverses both legs in the same unit
        of work. The reversal of the requested transaction is returned.
        """
        original = db.session.get(CapitalTransaction, transaction_id)
        if original is None:
            raise NotFoundError(f'Capital transaction {transaction_id} not found')
        if original.reference_type == TRADE_REFERENCE:
            raise ValidationError({'transaction_id': [
                'Trade settlement entries are reversed by deleting the trade']})

        def work():
            target = db.session.get(CapitalTransaction, transaction_id)
            if target.reference_type != TRANSFER_REFERENCE or target.transaction_type == 'REVERSAL':
                return self._reverse(target)

            legs = self._transfer_legs(target)
            for pool_id in sorted({leg.pool_id for leg in legs}):
                self.lock_pool(pool_id)
            reversals = {leg.id: self._reverse(leg) for leg in legs}
            return reversals[target.id]
        work.pool_id = original.pool_id

        reversal = self.atomic(work)
        logger.info(f"Reversed capital transaction {transaction_id} with {reversal.id}")
        return reversal

    def _transfer_legs(self, transaction: CapitalTransaction) -> List[CapitalTransaction]:
        """Both legs of the transfer a transaction belongs to, oldest first"""
        return CapitalTransaction.query.filter(
            CapitalTransaction.reference_type == TRANSFER_REFERENCE,
            CapitalTransaction.reference_id == transaction.reference_id,
            CapitalTransaction.transaction_type.in_(('TRANSFER_OUT', 'TRANSFER_IN')),
        ).order_by(CapitalTransaction.id).all()

    def _reverse(self, original: CapitalTransaction) -> CapitalTransaction:
        if original.transaction_type == 'REVERSAL':
            raise ValidationError({'transaction_id': ['A reversal cannot itself be reversed']})
        if original.is_reversed:
            raise ValidationError({'transaction_id': [
                f'Transaction {original.id} was already reversed by {original.reversed_by.id}']})

        pool = self.lock_pool(original.pool_id)
        return self._post(pool, 'REVERSAL', original.amount,
                          f'Reversal of transaction #{original.id}',
                          original.reference_id, original.reference_type,
                          reversal_of=original)

    # ---------- trade settlement (caller commits) ----------

    def settle_trade_entry(self, trade) -> List[CapitalTransaction]:
        """
        Withdraw the entry value for a new trade, and settle it at once if the
        trade was recorded already closed.

        Same-day OPTIONS trades recorded closed only book their P&L; the
        premium was never held outside the day.
        """
        if not trade.capital_pool_id:
            return []

        if trade.is_intraday_option:
            pool = self.lock_pool(trade.capital_pool_id)
            pnl = self._post_trade_pnl(pool, trade)
            return [pnl] if pnl else []

        pool = self.lock_pool(trade.capital_pool_id)
        transactions = [self._post(pool, 'INVESTMENT', trade.entry_value,
                                   f'Investment in {trade.symbol} {trade.position}',
                                   str(trade.id), TRADE_REFERENCE)]
        if trade.is_closed:
            transactions.extend(self.settle_trade_exit(trade))
        return transactions

    def settle_trade_exit(self, trade) -> List[CapitalTransaction]:
        """Return the invested principal and book the realised P&L"""
        if not trade.capital_pool_id:
            return []

        pool = self.lock_pool(trade.capital_pool_id)
        transactions = [self._post(pool, 'RETURN', trade.entry_value,
                                   f'Principal returned from {trade.symbol}',
                                   str(trade.id), TRADE_REFERENCE)]
        pnl = self._post_trade_pnl(pool, trade)
        if pnl:
            transactions.append(pnl)
        return transactions

    def _post_trade_pnl(self, pool: CapitalPool, trade) -> Optional[CapitalTransaction]:
        net_pnl = trade.net_pnl or 0.0
        if net_pnl > 0:
            return self._post(pool, 'PROFIT', net_pnl, f'Profit from {trade.symbol}',
                              str(trade.id), TRADE_REFERENCE)
        if net_pnl < 0:
            # A realised loss is booked even if it overdraws the pool
            return self._post(pool, 'LOSS', -net_pnl, f'Loss from {trade.symbol}',
                              str(trade.id), TRADE_REFERENCE, allow_overdraft=True)
        return None

    def reverse_trade_transactions(self, trade) -> List[CapitalTransaction]:
        """Reverse every open ledger entry a trade produced, oldest first"""
        entries = CapitalTransaction.query.filter(
            CapitalTransaction.reference_type == TRADE_REFERENCE,
            CapitalTransaction.reference_id == str(trade.id),
            CapitalTransaction.transaction_type != 'REVERSAL',
        ).order_by(CapitalTransaction.id).all()

        return [self._reverse(entry) for entry in entries if not entry.is_reversed]

    # ---------- pool setup ----------

    def setup_pools(self, total_amount: float, equity_amount: float, fno_amount: float,
                    description: Optional[str] = None) -> List[CapitalPool]:
        """
        Create or re-allocate the TOTAL / EQUITY / FNO pools.

        New pools open with a DEPOSIT of their allocation; existing pools get a
        DEPOSIT or WITHDRAWAL of the difference, so the balance always replays
        from the transaction history.
        """
        errors = {}
        for name, value in (('total_amount', total_amount), ('equity_amount', equity_amount),
                            ('fno_amount', fno_amount)):
            if value is None or value <= 0:
                errors[name] = ['Amount must be greater than 0']
        if not errors and equity_amount + fno_amount > total_amount:
            errors['total_amount'] = ['Equity and F&O amounts cannot exceed total capital']
        if errors:
            raise ValidationError(errors)

        allocations = (('TOTAL', total_amount), ('EQUITY', equity_amount), ('FNO', fno_amount))

        def work():
            return [self._allocate(pool_type, amount, description)
                    for pool_type, amount in allocations]

        pools = self.atomic(work)
        logger.info(f"Capital allocated: total={total_amount:.2f} equity={equity_amount:.2f} "
                    f"fno={fno_amount:.2f}")
        return pools

    def _allocate(self, pool_type: str, amount: float, description: Optional[str]) -> CapitalPool:
        amount = round(float(amount), 2)
        existing = CapitalPool.query.filter_by(pool_type=pool_type, is_active=True) \
            .order_by(CapitalPool.id).first()

        if existing is None:
            pool = CapitalPool(name=POOL_NAMES[pool_type], pool_type=pool_type,
                               initial_amount=amount, current_amount=0.0,
                               description=description)
            db.session.add(pool)
            db.session.flush()
            self._post(pool, 'DEPOSIT', amount, description or 'Initial capital allocation',
                       reference_type='ALLOCATION')
            return pool

        pool = self.lock_pool(existing.id)
        delta = round(amount - pool.initial_amount, 2)
        pool.initial_amount = amount
        if description is not None:
            pool.description = description

        if delta > 0:
            self._post(pool, 'DEPOSIT', delta, 'Capital re-allocation', reference_type='ALLOCATION')
        elif delta < 0:
            self._post(pool, 'WITHDRAWAL', -delta, 'Capital re-allocation', reference_type='ALLOCATION')
        return pool

    # ---------- queries ----------

    def get_pool(self, pool_id: int) -> CapitalPool:
        pool = db.session.get(CapitalPool, pool_id)
        if pool is None:
            raise NotFoundError(f'Capital pool {pool_id} not found')
        return pool

    def list_pools(self, recent_transactions: int = 10) -> Dict:
        """Active pools with their latest transactions and an allocation summary"""
        pools = CapitalPool.query.filter_by(is_active=True).order_by(CapitalPool.id).all()
        by_type = {}
        for pool in pools:
            by_type.setdefault(pool.pool_type, pool)

        def figure(pool_type, attribute):
            pool = by_type.get(pool_type)
            return getattr(pool, attribute) if pool else 0.0

        allocation = {
            'total_capital': figure('TOTAL', 'current_amount'),
            'equity_capital': figure('EQUITY', 'current_amount'),
            'fno_capital': figure('FNO', 'current_amount'),
            'total_pnl': figure('TOTAL', 'total_pnl'),
            'equity_pnl': figure('EQUITY', 'total_pnl'),
            'fno_pnl': figure('FNO', 'total_pnl'),
            'total_return': figure('TOTAL', 'total_return'),
            'equity_return': figure('EQUITY', 'total_return'),
            'fno_return': figure('FNO', 'total_return'),
            'total_invested': figure('TOTAL', 'total_invested'),
            'equity_invested': figure('EQUITY', 'total_invested'),
            'fno_invested': figure('FNO', 'total_invested'),
        }

        return {
            'pools': [pool.to_dict(recent_transactions=recent_transactions) for pool in pools],
            'allocation': allocation,
        }

    def list_transactions(self, pool_id: Optional[int] = None, transaction_type: Optional[str] = None,
                          limit: int = 50, offset: int = 0) -> Dict:
        query = CapitalTransaction.query
        if pool_id is not None:
            query = query.filter(CapitalTransaction.pool_id == pool_id)
        if transaction_type:
            query = query.filter(CapitalTransaction.transaction_type == transaction_type.upper())

        total = query.count()
        transactions = query.order_by(CapitalTransaction.id.desc()).offset(offset).limit(limit).all()
        return {
            'transactions': [txn.to_dict() for txn in transactions],
            'total': total,
            'limit': limit,
            'offset': offset,
        }

    def reconcile(self, pool_id: int) -> Dict:
        """Replay a pool's history and compare it with the stored balance and counters"""
        pool = self.get_pool(pool_id)

        balance = 0.0
        totals = {'total_invested': 0.0, 'total_withdrawn': 0.0, 'total_pnl': 0.0}
        count = 0
        mismatches = []

        for txn in pool.transactions.all():
            count += 1
            reversed_type = txn.reversal_of.transaction_type if txn.reversal_of_id else None
            sign, counter = transaction_effect(txn.transaction_type, reversed_type)

            balance = round(balance + sign * txn.amount, 2)
            if counter:
                attribute, step = counter
                totals[attribute] = round(totals[attribute] + step * txn.amount, 2)
            if abs(balance - txn.balance_after) > 0.005:
                mismatches.append(txn.id)

        actual = round(pool.current_amount, 2)
        counters_match = all(abs(totals[name] - getattr(pool, name)) <= 0.005 for name in totals)
        consistent = abs(balance - actual) <= 0.005 and counters_match and not mismatches

        if not consistent:
            logger.error(f"Pool {pool.name} failed reconciliation: expected {balance:.2f}, "
                         f"stored {actual:.2f}")

        return {
            'pool_id': pool.id,
            'pool_name': pool.name,
            'expected_balance': balance,
            'actual_balance': actual,
            'difference': round(actual - balance, 2),
            'expected_totals': totals,
            'actual_totals': {name: getattr(pool, name) for name in totals},
            'balance_after_mismatches': mismatches,
            'transaction_count': count,
            'consistent': consistent,
        }

"""
Capital Blueprint

Capital pools and their transaction ledger.
"""

from flask import Blueprint, current_app, jsonify, request

from journal_app.forms import (CapitalSetupForm, CapitalTransactionForm, TransferForm,
                               validate_payload)
from journal_app.services import CapitalLedger

capital_bp = Blueprint('capital', __name__)

# Initialize services
ledger = CapitalLedger()


@capital_bp.route('', methods=['GET'])
def list_pools():
    """Capital pools with recent transactions and allocation summary"""
    return jsonify({'success': True, **ledger.list_pools()})


@capital_bp.route('', methods=['POST'])
def setup_pools():
    """Create or re-allocate the total, equity and F&O pools"""
    form = validate_payload(CapitalSetupForm, request.get_json(silent=True))
    pools = ledger.setup_pools(form.total_amount.data, form.equity_amount.data,
                               form.fno_amount.data, form.description.data or None)
    return jsonify({
        'success': True,
        'message': 'Capital allocation updated',
        'pools': [pool.to_dict() for pool in pools],
    })


@capital_bp.route('/transactions', methods=['GET'])
def list_transactions():
    max_page_size = current_app.config.get('MAX_PAGE_SIZE', 200)
    limit = min(max(request.args.get('limit', 50, type=int) or 50, 1), max_page_size)
    offset = max(request.args.get('offset', 0, type=int) or 0, 0)

    result = ledger.list_transactions(
        pool_id=request.args.get('pool_id', type=int),
        transaction_type=request.args.get('type'),
        limit=limit,
        offset=offset,
    )
    return jsonify({'success': True, **result})


@capital_bp.route('/transactions', methods=['POST'])
def add_transaction():
    """Apply a manual transaction to a pool"""
    form = validate_payload(CapitalTransactionForm, request.get_json(silent=True))
    transaction = ledger.apply_transaction(
        form.pool_id.data,
        form.transaction_type.data,
        form.amount.data,
        description=form.description.data or None,
        reference_id=form.reference_id.data or None,
        reference_type=form.reference_type.data or None,
    )
    return jsonify({'success': True, 'transaction': transaction.to_dict()}), 201


@capital_bp.route('/transactions/<int:transaction_id>', methods=['DELETE'])
def delete_transaction(transaction_id):
    """Cancel a transaction by appending a compensating reversal"""
    reversal = ledger.reverse_transaction(transaction_id)
    return jsonify({
        'success': True,
        'message': f'Transaction {transaction_id} reversed',
        'reversal': reversal.to_dict(),
    })


@capital_bp.route('/transfer', methods=['POST'])
def transfer():
    form = validate_payload(TransferForm, request.get_json(silent=True))
    result = ledger.transfer(form.from_pool_id.data, form.to_pool_id.data, form.amount.data,
                             form.description.data or None)
    return jsonify({'success': True, **result}), 201


@capital_bp.route('/pools/<int:pool_id>/reconcile', methods=['GET'])
def reconcile(pool_id):
    """Replay a pool's ledger and compare it with the stored balance"""
    return jsonify({'success': True, 'reconciliation': ledger.reconcile(pool_id)})

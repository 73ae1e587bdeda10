# workflow.py - status rules for product requests and admin stock requests
"""
Product request review:

    pending_review --approve--------> approved           (terminal)
    pending_review --reject---------> rejected           (terminal)
    pending_review --request_changes-> changes_requested
    changes_requested --resubmit----> pending_review

Admin stock requests move requested -> partially_fulfilled -> fulfilled as
credentials are delivered; requested/partially_fulfilled can also end in
rejected (by the vendor, only while nothing was delivered) or cancelled (by
the admin, any time before fulfilled).
"""

PENDING_REVIEW = 'pending_review'
APPROVED = 'approved'
REJECTED = 'rejected'
CHANGES_REQUESTED = 'changes_requested'

PRODUCT_REQUEST_STATUSES = (PENDING_REVIEW, APPROVED, REJECTED, CHANGES_REQUESTED)

# action -> (target status, comment required)
REVIEW_ACTIONS = {
    'approve': (APPROVED, False),
    'reject': (REJECTED, True),
    'request_changes': (CHANGES_REQUESTED, True),
}

REQUESTED = 'requested'
PARTIALLY_FULFILLED = 'partially_fulfilled'
FULFILLED = 'fulfilled'
CANCELLED = 'cancelled'

STOCK_REQUEST_STATUSES = (REQUESTED, PARTIALLY_FULFILLED, FULFILLED, REJECTED, CANCELLED)
OPEN_STOCK_STATUSES = (REQUESTED, PARTIALLY_FULFILLED)


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class CommentRequired(WorkflowError):
    status_code = 400


class InvalidTransition(WorkflowError):
    status_code = 409


class QuantityExceeded(WorkflowError):
    status_code = 400


def clean_comment(comment):
    if comment is None:
        return None
    comment = str(comment).strip()
    return comment or None


def check_review_comment(action, comment):
    """Validate the action name and its comment before anything is loaded."""
    if action not in REVIEW_ACTIONS:
        raise WorkflowError(f'Unknown review action: {action}')
    target, needs_comment = REVIEW_ACTIONS[action]
    comment = clean_comment(comment)
    if needs_comment and not comment:
        raise CommentRequired('A comment is required to reject or request changes')
    return target, comment


def review_transition(current_status, action, comment=None):
    """Return (new_status, comment) for an admin review action on a product request."""
    target, comment = check_review_comment(action, comment)
    if current_status != PENDING_REVIEW:
        raise InvalidTransition(f'Cannot {action.replace("_", " ")} a request that is {current_status}')
    return target, comment


def resubmit_transition(current_status):
    if current_status != CHANGES_REQUESTED:
        raise InvalidTransition(f'Only requests with changes requested can be resubmitted (current: {current_status})')
    return PENDING_REVIEW


def remaining_quantity(quantity_requested, quantity_fulfilled):
    return max(0, int(quantity_requested or 0) - int(quantity_fulfilled or 0))


def stock_status_for(quantity_requested, quantity_fulfilled):
    if quantity_fulfilled >= quantity_requested:
        return FULFILLED
    if quantity_fulfilled > 0:
        return PARTIALLY_FULFILLED
    return REQUESTED


def apply_fulfillment(quantity_requested, quantity_fulfilled, delivered):
    """Counters after delivering ``delivered`` units against a stock request.

    Returns a dict with quantityFulfilled, remainingQuantity and status.
    Delivering more than what remains raises QuantityExceeded.
    """
    if delivered <= 0:
        raise WorkflowError('No units delivered')
    remaining = remaining_quantity(quantity_requested, quantity_fulfilled)
    if remaining <= 0:
        raise InvalidTransition('Request is already fully fulfilled')
    if delivered > remaining:
        raise QuantityExceeded(
            f'Upload contains {delivered} unit(s) but only {remaining} remain on this request'
        )
    fulfilled = int(quantity_fulfilled or 0) + delivered
    return {
        'quantityFulfilled': fulfilled,
        'remainingQuantity': quantity_requested - fulfilled,
        'status': stock_status_for(quantity_requested, fulfilled),
    }


def revert_fulfillment(quantity_requested, quantity_fulfilled, withdrawn):
    """Counters after a delivered credential is rejected by the admin."""
    fulfilled = max(0, int(quantity_fulfilled or 0) - int(withdrawn or 0))
    return {
        'quantityFulfilled': fulfilled,
        'remainingQuantity': quantity_requested - fulfilled,
        'status': stock_status_for(quantity_requested, fulfilled),
    }


def check_cancellable(status):
    if status in (FULFILLED, CANCELLED, REJECTED):
        raise InvalidTransition(f'Cannot cancel a {status} request')


def check_vendor_rejectable(status):
    if status != REQUESTED:
        raise InvalidTransition('Only requests that have not been fulfilled yet can be rejected')

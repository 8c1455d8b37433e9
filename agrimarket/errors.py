"""Error taxonomy for the order and settlement workflow."""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

log = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for every error surfaced to callers."""
    status_code = 400
    code = 'marketplace_error'
    retryable = False

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'code': self.code, 'message': self.message, 'retryable': self.retryable}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(MarketplaceError):
    """Malformed or out-of-range input, rejected before any mutation."""
    status_code = 400
    code = 'validation_error'


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    code = 'permission_denied'


class NotFoundError(MarketplaceError):
    status_code = 404
    code = 'not_found'


class BusinessRuleError(MarketplaceError):
    """Well-formed request that the current state does not allow."""
    status_code = 409
    code = 'business_rule_violation'


class InsufficientInventoryError(BusinessRuleError):
    code = 'insufficient_inventory'


class InvalidTransitionError(BusinessRuleError):
    code = 'invalid_transition'


class PaymentAlreadyProcessedError(BusinessRuleError):
    code = 'payment_already_processed'


class ConstraintViolationError(BusinessRuleError):
    code = 'constraint_violation'


class TransientStoreError(MarketplaceError):
    """The data store is unreachable or timed out; safe to retry."""
    status_code = 503
    code = 'store_unavailable'
    retryable = True


@contextmanager
def translate_db_errors(session, operation):
    """Roll back ``session`` and map SQLAlchemy failures onto the taxonomy.

    Errors already in the taxonomy roll back and propagate unchanged.
    """
    try:
        yield
    except MarketplaceError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        log.warning('%s rejected by constraint: %s', operation, exc.orig)
        raise ConstraintViolationError(f'{operation} violates a data constraint') from exc
    except (OperationalError, PoolTimeoutError) as exc:
        session.rollback()
        log.warning('%s failed on data store: %s', operation, exc)
        raise TransientStoreError(f'{operation} failed: data store unavailable, please retry') from exc
    except DBAPIError as exc:
        session.rollback()
        if exc.connection_invalidated:
            log.warning('%s lost its connection: %s', operation, exc)
            raise TransientStoreError(f'{operation} failed: connection lost, please retry') from exc
        raise

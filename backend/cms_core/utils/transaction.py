from contextlib import contextmanager

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from cms_core.extensions import db
from cms_core.domain.exceptions import ConcurrencyConflictError

_DEPTH_KEY = "cms_core.tx_depth"
_AFTER_COMMIT_KEY = "cms_core.after_commit"


@contextmanager
def transactional(session=None):
    """
    Context manager for database transactions.

    Nested blocks join the outermost one; only the outermost block commits
    or rolls back. Callbacks queued with `after_commit` run after that commit
    and are discarded on rollback.
    """
    session = session or db.session
    info = session.info
    depth = info.get(_DEPTH_KEY, 0)
    info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except StaleDataError as exc:
        if depth == 0:
            _rollback(session)
        raise ConcurrencyConflictError(
            "The record was modified by another request; re-read and retry"
        ) from exc
    except Exception:
        if depth == 0:
            _rollback(session)
        raise
    finally:
        info[_DEPTH_KEY] = depth

    if depth == 0:
        _run_callbacks(info.pop(_AFTER_COMMIT_KEY, []))


def after_commit(callback, *args, session=None, **kwargs):
    """
    Run `callback` once the current transaction commits.
    Outside a transaction it runs immediately.
    """
    session = session or db.session
    if session.info.get(_DEPTH_KEY, 0) == 0:
        _run_callbacks([(callback, args, kwargs)])
        return
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append((callback, args, kwargs))


def _rollback(session):
    session.rollback()
    session.info.pop(_AFTER_COMMIT_KEY, None)


def _run_callbacks(callbacks):
    # Collaborator failures never undo a committed state change
    for callback, args, kwargs in callbacks:
        try:
            callback(*args, **kwargs)
        except Exception:
            current_app.logger.exception(
                "Post-commit callback %s failed", getattr(callback, "__name__", callback)
            )
